"""
VSL environments - Pure Functional Style
Lexical LocalEnv lists, the Session record, pattern binding and the run context
"""

from typing import Any, Dict, List, Optional
import os
from error_handling import VSLRuntimeError
from semantics import make_schema
from values import make_pp_opts


# Output levels, lower is more important
SILENT = 0
ERROR = 1
WARN = 2
INFO = 3
DEBUG = 4

VERBOSITY_NAMES = {'silent': SILENT, 'error': ERROR, 'warn': WARN, 'info': INFO, 'debug': DEBUG}


# ============================================================================
# OPTIONS
# ============================================================================

def make_options(verbosity: int = INFO, show_position: bool = False, summary_file: Optional[str] = None,
                 summary_format: str = 'pretty', use_color: bool = False, debug: bool = False) -> Dict:
  """Create the immutable run options, the summary path is fixed against the starting directory"""
  return {
      'verbosity': verbosity,
      'show_position': show_position,
      'summary_file': os.path.abspath(summary_file) if summary_file else None,
      'summary_format': summary_format,
      'use_color': use_color,
      'debug': debug
  }


def print_out(options: Dict, level: int, text: str) -> None:
  """Print text when the verbosity admits the level"""
  if level <= options['verbosity']:
    print(text)


def print_out_top(rc: Dict, level: int, text: str) -> None:
  """Print from a running statement, prefixed with its position when enabled"""
  options = rc['options']
  if options['show_position'] and rc.get('position') is not None:
    body = "\n".join("\t" + line for line in text.split("\n"))
    text = f"[output] at {rc['position']}:\n{body}"
  print_out(options, level, text)


# ============================================================================
# LOCAL ENVIRONMENT
# ============================================================================

def make_local_let(name: str, schema: Optional[Dict], doc: Optional[List[str]], value: Dict) -> Dict:
  """Let binding in a LocalEnv"""
  return {'kind': 'let', 'name': name, 'schema': schema, 'doc': doc, 'value': value}


def make_local_typedef(name: str, type_info: Dict) -> Dict:
  """Local type alias in a LocalEnv"""
  return {'kind': 'typedef', 'name': name, 'type': type_info}


def extend_local(local_env: List[Dict], binding: Dict) -> List[Dict]:
  """Return a new LocalEnv with binding in front"""
  return [binding] + local_env


def lookup_local(local_env: List[Dict], name: str) -> Optional[Dict]:
  """First (most recent) let binding of name"""
  for binding in local_env:
    if binding['kind'] == 'let' and binding['name'] == name:
      return binding
  return None


# ============================================================================
# SESSION
# ============================================================================

def make_session(values: Optional[Dict] = None, types: Optional[Dict] = None,
                 docs: Optional[Dict] = None, prims_avail: Optional[set] = None) -> Dict:
  """Create the top-level session record"""
  return {
      'values': dict(values or {}),
      'types': dict(types or {}),
      'typedefs': {},
      'docs': dict(docs or {}),
      'prims_avail': frozenset(prims_avail or {'Current'}),
      'term_env': {},
      'proofs': [],
      'pp_opts': make_pp_opts()
  }


def extend_env(session: Dict, name: str, schema: Optional[Dict], doc: Optional[List[str]], value: Dict) -> Dict:
  """Return a new session with name bound

  Term values are also made visible to inline terms under the same name.
  """
  new_session = {**session, 'values': {**session['values'], name: value}}
  if schema is not None:
    new_session['types'] = {**session['types'], name: schema}
  if doc is not None:
    new_session['docs'] = {**session['docs'], name: doc}
  if value['type'] == "Term":
    new_session['term_env'] = {**session['term_env'], name: value['value']}
  return new_session


def add_typedef(session: Dict, name: str, type_info: Dict) -> Dict:
  return {**session, 'typedefs': {**session['typedefs'], name: type_info}}


def merge_local(local_env: List[Dict], session: Dict) -> Dict:
  """Fold a LocalEnv into a copy of the session, most recent binding winning"""
  merged = session
  for binding in reversed(local_env):
    if binding['kind'] == 'let':
      merged = extend_env(merged, binding['name'], binding['schema'], binding['doc'], binding['value'])
    else:
      merged = add_typedef(merged, binding['name'], binding['type'])
  return merged


# ============================================================================
# PATTERN BINDING
# ============================================================================

def _describe_shape(value: Dict) -> str:
  if value['type'] == "Tuple":
    return f"a tuple of size {len(value['value'])}"
  if value['type'] == "Unit":
    return "a tuple of size 0"
  return f"a value of type {value['type']}"


def _tuple_parts(pattern: Dict, schema: Optional[Dict], value: Dict) -> List:
  """Split value and schema across a tuple pattern or fail on shape mismatch"""
  elements = pattern['children']
  if value['type'] == "Unit":
    items = []
  elif value['type'] == "Tuple":
    items = value['value']
  else:
    items = None
  if items is None or len(items) != len(elements):
    raise VSLRuntimeError(
        f"pattern mismatch: expected a tuple of size {len(elements)}, got {_describe_shape(value)}",
        pattern.get('span'))

  schemas: List[Optional[Dict]] = [None] * len(elements)
  if schema is not None:
    t = schema['type']
    if t['kind'] == 'con' and t['name'] == 'Tuple' and len(t['parameters']) == len(elements):
      schemas = [make_schema(schema['vars'], p) for p in t['parameters']]
  return list(zip(elements, schemas, items))


def bind_pattern_local(pattern: Dict, schema: Optional[Dict], value: Dict, local_env: List[Dict]) -> List[Dict]:
  """Destructure value against pattern, extending a LocalEnv"""
  node_type = pattern['type']
  if node_type == 'PATTERN_WILDCARD':
    return local_env
  if node_type == 'PATTERN_VAR':
    return extend_local(local_env, make_local_let(pattern['value'], schema, None, value))
  if node_type == 'PATTERN_LOCATED':
    return bind_pattern_local(pattern['children'][0], schema, value, local_env)
  for element, element_schema, item in _tuple_parts(pattern, schema, value):
    local_env = bind_pattern_local(element, element_schema, item, local_env)
  return local_env


def bind_pattern_env(pattern: Dict, schema: Optional[Dict], value: Dict, session: Dict) -> Dict:
  """Destructure value against pattern, extending the session"""
  node_type = pattern['type']
  if node_type == 'PATTERN_WILDCARD':
    return session
  if node_type == 'PATTERN_VAR':
    return extend_env(session, pattern['value'], schema, None, value)
  if node_type == 'PATTERN_LOCATED':
    return bind_pattern_env(pattern['children'][0], schema, value, session)
  for element, element_schema, item in _tuple_parts(pattern, schema, value):
    session = bind_pattern_env(element, element_schema, item, session)
  return session


# ============================================================================
# RUN CONTEXT
# ============================================================================

def make_run_context(session: Dict, options: Dict, bic: Dict, kind: str = 'TopLevel',
                     state: Optional[Dict] = None) -> Dict:
  """Reader over the live session for running actions

  The session lives in a shared reference cell so nested contexts see and
  install the same session.
  """
  return {
      'kind': kind,
      'ref': {'current': session},
      'state': state,
      'options': options,
      'bic': bic,
      'position': None
  }


def sub_context(rc: Dict, kind: str, state: Optional[Dict]) -> Dict:
  """Context for running a ProofScript or Setup action, sharing the session"""
  return {**rc, 'kind': kind, 'state': state}


def get_session(rc: Dict) -> Dict:
  return rc['ref']['current']


def put_session(rc: Dict, session: Dict) -> None:
  rc['ref']['current'] = session


def debug_log(rc: Dict, text: str) -> None:
  """Interpreter tracing, shown only with --debug"""
  if rc['options']['debug']:
    print(f"[debug] {text}")
