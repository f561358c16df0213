"""
VSL Interpreter - Pure Functional Style
Expressions evaluate against an immutable LocalEnv, statements read and
install the session through the run context
"""

from typing import Any, Dict, List, Optional
from types import SimpleNamespace
import os
import sys

from error_handling import VSLRuntimeError, VSLTypeError
from parsing import create_parser, make_ast_node, VSLParser
from semantics import (
  check_decl, check_decl_group, check_type, is_block_type, is_function_type, is_wildcard, mono,
  pattern_annotation, pattern_names, pretty_schema, t_block, t_context
)
from session import (
  INFO, bind_pattern_env, bind_pattern_local, debug_log, extend_local, get_session,
  lookup_local, make_local_let, make_local_typedef, make_options, make_run_context,
  merge_local, print_out_top, put_session, add_typedef
)
from stdlib import initial_session
from proofs import write_verification_summary
from terms import parse_decls, parse_term, parse_term_type
from values import (
  index_value, is_unit, lookup_value, make_action, make_array, make_bool,
  make_builtin, make_closure, make_ctype, make_int, make_record, make_string, make_term,
  make_tuple, show_value, tuple_lookup_value, with_trace
)


# ============================================================================
# APPLICATION AND ACTIONS
# ============================================================================

def apply_value(fn: Dict, arg: Dict, rc: Dict, span: Optional[Any] = None) -> Dict:
  """Apply a closure or builtin to one argument"""
  tag = fn['type']
  if tag not in ("Closure", "Builtin"):
    pp_opts = get_session(rc)['pp_opts']
    raise VSLRuntimeError(f"interpret Application: {show_value(pp_opts, fn)}", span)

  try:
    if tag == "Closure":
      closure = fn['value']
      if closure['env'] is None:
        raise VSLRuntimeError("closure applied before its recursive group was resolved", span)
      env = bind_pattern_local(closure['pattern'], None, arg, closure['env'])
      return eval_expr(env, closure['body'], rc)

    builtin = fn['value']
    args = builtin['args'] + [arg]
    if len(args) < builtin['arity']:
      return make_builtin(builtin['name'], builtin['arity'], builtin['func'], args)
    return builtin['func'](*args)
  except VSLRuntimeError as e:
    if fn.get('trace'):
      e.add_trace(fn['trace'])
    raise


def run_action(action: Dict, rc: Dict) -> Dict:
  """Run a deferred action in the context described by rc"""
  if action['type'] != "Action":
    pp_opts = get_session(rc)['pp_opts']
    raise VSLRuntimeError(f"expected a monadic action, got {show_value(pp_opts, action)}")
  context = action['value']['context']
  if context is not None and context != rc['kind']:
    raise VSLRuntimeError(f"cannot run a {context} action in the {rc['kind']} context")
  return action['value']['thunk'](rc)


# ============================================================================
# EVALUATION FUNCTIONS
# ============================================================================

def eval_expr(env: List[Dict], expr: Dict, rc: Dict) -> Dict:
  """
  Evaluate an expression node under a LocalEnv.
  The session is only read, never installed, during evaluation.
  """
  node_type = expr['type']
  span = expr.get('span')

  if rc['options']['debug']:
    debug_log(rc, f"Evaluating: {node_type}")

  if node_type == "BOOL":
    return make_bool(expr['value'])
  elif node_type == "INT":
    return make_int(expr['value'])
  elif node_type == "STRING":
    return make_string(expr['value'])
  elif node_type == "CODE":
    return eval_code(env, expr, rc)
  elif node_type == "CTYPE":
    return make_ctype(parse_term_type(expr['value'], span))
  elif node_type == "ARRAY":
    return make_array([eval_expr(env, child, rc) for child in expr['children']])
  elif node_type == "TUPLE":
    return make_tuple([eval_expr(env, child, rc) for child in expr['children']])
  elif node_type == "RECORD":
    return make_record({name: eval_expr(env, child, rc) for name, child in zip(expr['value'], expr['children'])})
  elif node_type == "INDEX":
    array, index = expr['children']
    return index_value(eval_expr(env, array, rc), eval_expr(env, index, rc), span)
  elif node_type == "LOOKUP":
    return lookup_value(eval_expr(env, expr['children'][0], rc), expr['value'], span)
  elif node_type == "TLOOKUP":
    return tuple_lookup_value(eval_expr(env, expr['children'][0], rc), expr['value'], span)
  elif node_type == "VAR":
    return eval_var(env, expr, rc)
  elif node_type == "FUNCTION":
    return make_closure(expr['value'], env, expr['children'][0])
  elif node_type == "APPLICATION":
    fn, arg = expr['children']
    fn_value = eval_expr(env, fn, rc)
    arg_value = eval_expr(env, arg, rc)
    return apply_value(fn_value, arg_value, rc, span)
  elif node_type == "LET":
    inner = interpret_decl_group(env, expr['value'], rc)
    return eval_expr(inner, expr['children'][0], rc)
  elif node_type in ("TSIG", "LOCATED"):
    return eval_expr(env, expr['children'][0], rc)
  elif node_type == "IF":
    return eval_if(env, expr, rc)
  elif node_type == "BLOCK":
    stmts = expr['children']
    return make_action(None, lambda block_rc: interpret_stmts(env, stmts, block_rc))
  raise VSLRuntimeError(f"cannot evaluate node {node_type}", span)


def eval_var(env: List[Dict], expr: Dict, rc: Dict) -> Dict:
  """Look up a name, innermost local binding first, then the session"""
  name = expr['value']
  binding = lookup_local(env, name)
  if binding is not None:
    value = binding['value']
  else:
    value = get_session(rc)['values'].get(name)
    if value is None:
      raise VSLRuntimeError(f"unknown variable: {name}", expr.get('span'))
  return with_trace(value, name)


def eval_code(env: List[Dict], expr: Dict, rc: Dict) -> Dict:
  """Elaborate an inline term against the merged scope"""
  merged = merge_local(env, get_session(rc))
  return make_term(parse_term(expr['value'], merged['term_env'], expr.get('span')))


def eval_if(env: List[Dict], expr: Dict, rc: Dict) -> Dict:
  cond, then_branch, else_branch = expr['children']
  test = eval_expr(env, cond, rc)
  if test['type'] != "Bool":
    raise VSLRuntimeError(f"if: expected a Bool condition, got {test['type']}", cond.get('span'))
  return eval_expr(env, then_branch if test['value'] else else_branch, rc)


# ============================================================================
# DECLARATION GROUPS
# ============================================================================

def interpret_decl(env: List[Dict], decl: Dict, rc: Dict) -> List[Dict]:
  """Evaluate a declaration and bind its pattern"""
  value = eval_expr(env, decl['children'][0], rc)
  return bind_pattern_local(decl['value'], decl.get('type_info'), value, env)


def interpret_function(expr: Dict, span: Optional[Any] = None) -> Dict:
  """Closure for a recursive group member, environment still unset"""
  while expr['type'] in ("TSIG", "LOCATED"):
    expr = expr['children'][0]
  if expr['type'] != "FUNCTION":
    raise VSLRuntimeError("interpret_function: not a function", span)
  return make_closure(expr['value'], None, expr['children'][0])


def interpret_decl_group(env: List[Dict], group: Dict, rc: Dict) -> List[Dict]:
  """Bind a declaration group, tying the knot for recursive groups"""
  decls = group['children']
  if group['value'] != 'rec':
    return interpret_decl(env, decls[0], rc)

  closures = [interpret_function(decl['children'][0], decl.get('span')) for decl in decls]
  rec_env = env
  for decl, closure in zip(decls, closures):
    names = pattern_names(decl['value'])
    if len(names) != 1:
      raise VSLRuntimeError("recursive declarations must bind a single name", decl.get('span'))
    rec_env = extend_local(rec_env, make_local_let(names[0], decl.get('type_info'), None, closure))

  for closure in closures:
    closure['value']['env'] = rec_env
  return rec_env


# ============================================================================
# STATEMENT SEQUENCING
# ============================================================================

def interpret_stmts(env: List[Dict], stmts: List[Dict], rc: Dict) -> Dict:
  """Run the statements of a block, the final expression gives its result"""
  rest = list(stmts)
  while True:
    if not rest:
      raise VSLRuntimeError("empty block")
    stmt, rest = rest[0], rest[1:]
    node_type = stmt['type']
    span = stmt.get('span')

    if node_type == 'STMT_BIND':
      pattern = stmt['value']
      action = eval_expr(env, stmt['children'][0], rc)
      if not rest and is_wildcard(pattern):
        return run_action(action, rc)
      result = run_action(action, rc)
      env = bind_pattern_local(pattern, None, result, env)
    elif node_type == 'STMT_LET':
      env = interpret_decl_group(env, stmt['value'], rc)
    elif node_type == 'STMT_CODE':
      # Declarations go into the session-wide term environment, local
      # Term bindings visible here are carried along with them
      session = get_session(rc)
      merged = merge_local(env, session)
      put_session(rc, {**session, 'term_env': parse_decls(stmt['value'], merged['term_env'], span)})
    elif node_type == 'STMT_IMPORT':
      raise VSLRuntimeError("block import unimplemented", span)
    elif node_type == 'STMT_TYPEDEF':
      env = extend_local(env, make_local_typedef(stmt['value']['name'], stmt['value']['type']))
    else:
      raise VSLRuntimeError(f"unknown statement {node_type}", span)


def interpret_stmt(print_binds: bool, stmt: Dict, rc: Dict) -> None:
  """Run one top-level statement against the session"""
  node_type = stmt['type']
  span = stmt.get('span')
  debug_log(rc, f"Statement: {node_type} at {span}")

  try:
    dispatch_stmt(print_binds, stmt, rc)
  except RecursionError:
    raise VSLRuntimeError("stack overflow: recursion too deep", span) from None


def dispatch_stmt(print_binds: bool, stmt: Dict, rc: Dict) -> None:
  node_type = stmt['type']
  span = stmt.get('span')
  if node_type == 'STMT_BIND':
    process_stmt_bind(print_binds, stmt['value'], stmt['children'][0], rc, span)
  elif node_type == 'STMT_LET':
    session = get_session(rc)
    group = check_decl_group(session['types'], session['typedefs'], stmt['value'], rc['options']['debug'])
    local_env = interpret_decl_group([], group, rc)
    put_session(rc, merge_local(local_env, get_session(rc)))
  elif node_type == 'STMT_CODE':
    session = get_session(rc)
    put_session(rc, {**session, 'term_env': parse_decls(stmt['value'], session['term_env'], span)})
  elif node_type == 'STMT_IMPORT':
    process_import(stmt, rc)
  elif node_type == 'STMT_TYPEDEF':
    session = get_session(rc)
    resolved = check_type(session['typedefs'], stmt['value']['type'], span)
    put_session(rc, add_typedef(session, stmt['value']['name'], resolved))
  else:
    raise VSLRuntimeError(f"unknown statement {node_type}", span)


def process_stmt_bind(print_binds: bool, pattern: Dict, expr: Dict, rc: Dict,
                      span: Optional[Any] = None) -> None:
  """Check, evaluate and bind the right-hand side of a top-level bind

  A TopLevel action is run and its result bound, anything else is bound
  as it is.
  """
  session = get_session(rc)
  declared = pattern_annotation(pattern)
  if declared is not None:
    expr = make_ast_node("TSIG", t_block(t_context('TopLevel'), declared), [expr], span)
  decl = make_ast_node("DECL", make_ast_node("PATTERN_WILDCARD", "_", span=span), [expr], span)
  decl = check_decl(session['types'], session['typedefs'], decl, top_level=True, debug=rc['options']['debug'])
  schema = decl['type_info']
  if schema['vars']:
    raise VSLTypeError(f"Not a monomorphic type: {pretty_schema(schema)}", span)

  value = eval_expr([], expr, rc)
  if is_block_type(schema['type'], 'TopLevel'):
    result = run_action(value, rc)
    result_schema = mono(schema['type']['parameters'][1])
  else:
    result = value
    result_schema = schema

  session = get_session(rc)
  if print_binds and is_wildcard(pattern) and not is_unit(result):
    print_out_top(rc, INFO, show_value(session['pp_opts'], result))
  if is_function_type(result_schema['type']):
    names = pattern_names(pattern)
    name = names[0] if len(names) == 1 else "it"
    print_out_top(rc, INFO, f"{name} : {pretty_schema(result_schema)}")

  put_session(rc, bind_pattern_env(pattern, result_schema, result, session))


def process_import(stmt: Dict, rc: Dict) -> None:
  """Load a file of term declarations, optionally under a qualifier"""
  info = stmt['value']
  span = stmt.get('span')
  try:
    with open(info['file'], 'r', encoding='utf-8') as f:
      text = f.read()
  except OSError as e:
    raise VSLRuntimeError(f"import: cannot read {info['file']}: {e.strerror}", span)
  session = get_session(rc)
  put_session(rc, {**session, 'term_env': parse_decls(text, session['term_env'], span, info['qualifier'])})


# ============================================================================
# FILE EVALUATION
# ============================================================================

_parser: Optional[VSLParser] = None

# Each script-level call takes a handful of Python frames
RECURSION_LIMIT = 10000


def raise_recursion_limit() -> None:
  if sys.getrecursionlimit() < RECURSION_LIMIT:
    sys.setrecursionlimit(RECURSION_LIMIT)


def get_parser(debug: bool = False) -> VSLParser:
  """Shared parser, the grammar is built once"""
  global _parser
  if _parser is None:
    _parser = create_parser(debug)
  return _parser


def interpret_file(rc: Dict, path: str, run_main: bool = False) -> None:
  """Run every statement of a script file in the file's directory"""
  statements = get_parser().parse_file(path)
  old_cwd = os.getcwd()
  os.chdir(os.path.dirname(os.path.abspath(path)))
  try:
    for stmt in statements:
      interpret_stmt(False, stmt, {**rc, 'position': stmt.get('span')})
    if run_main:
      interpret_main(rc)
  finally:
    os.chdir(old_cwd)
  write_verification_summary(rc)


def interpret_main(rc: Dict) -> None:
  """Run `main` when the script defined it"""
  main = get_session(rc)['values'].get('main')
  if main is not None:
    run_action(main, rc)


def make_builtin_context() -> Dict:
  """Callbacks primitives use to reach back into the interpreter"""
  return {
      'interpret_file': interpret_file,
      'apply': apply_value,
      'run_action': run_action,
      'parse_file': lambda path: get_parser().parse_file(path),
  }


def process_file(options: Dict, path: str) -> Dict:
  """Run a script with a fresh session and return the final session"""
  raise_recursion_limit()
  bic = make_builtin_context()
  rc = make_run_context(initial_session(options, bic), options, bic)
  interpret_file(rc, path, run_main=True)
  return get_session(rc)


# ============================================================================
# FACTORY FUNCTIONS (for main.py and tests)
# ============================================================================

def create_interpreter(options: Optional[Dict] = None):
  """Factory returning an interpreter bound to a fresh session"""
  raise_recursion_limit()
  options = options or make_options()
  bic = make_builtin_context()
  rc = make_run_context(initial_session(options, bic), options, bic)
  parser = get_parser(options['debug'])

  def run_statement(text: str, print_binds: bool = True) -> None:
    interpret_stmt(print_binds, parser.parse_statement(text), rc)

  def run_program(text: str, filename: str = "<input>", print_binds: bool = False) -> None:
    for stmt in parser.parse_string(text, filename):
      interpret_stmt(print_binds, stmt, {**rc, 'position': stmt.get('span')})

  def run_file(path: str) -> None:
    interpret_file(rc, path, run_main=True)

  def lookup(name: str) -> Optional[Dict]:
    return get_session(rc)['values'].get(name)

  return SimpleNamespace(
      rc=rc,
      parser=parser,
      options=options,
      run_statement=run_statement,
      run_program=run_program,
      run_file=run_file,
      lookup=lookup,
      session=lambda: get_session(rc),
  )
