"""
VSL runtime values
Every value is an immutable dictionary {'type': tag, 'value': payload}
"""

from typing import Any, Callable, Dict, List, Optional
from error_handling import VSLRuntimeError
from terms import pretty_term


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_value(value: Any, type_name: str) -> Dict:
  """Create an immutable runtime value"""
  return {
      'value': value,
      'type': type_name
  }


def make_unit() -> Dict:
  return make_value(None, "Unit")


def make_bool(b: bool) -> Dict:
  return make_value(bool(b), "Bool")


def make_int(n: int) -> Dict:
  return make_value(int(n), "Int")


def make_string(s: str) -> Dict:
  return make_value(s, "String")


def make_array(elements: List[Dict]) -> Dict:
  return make_value(list(elements), "Array")


def make_tuple(elements: List[Dict]) -> Dict:
  """Tuples of zero elements are unit"""
  if not elements:
    return make_unit()
  return make_value(list(elements), "Tuple")


def make_record(fields: Dict[str, Dict]) -> Dict:
  return make_value(dict(fields), "Record")


def make_closure(pattern: Dict, env: Optional[List[Dict]], body: Dict) -> Dict:
  """Lambda value capturing its lexical environment

  The environment may be None while a recursive group is being resolved,
  it is filled in before the closure can be applied.
  """
  return make_value({'pattern': pattern, 'env': env, 'body': body}, "Closure")


def make_builtin(name: Optional[str], arity: int, func: Callable[..., Dict],
                 args: Optional[List[Dict]] = None) -> Dict:
  """Curried primitive function collecting arguments until arity is reached"""
  return make_value({'name': name, 'arity': arity, 'func': func, 'args': list(args or [])}, "Builtin")


def make_action(context: Optional[str], thunk: Callable[[Dict], Dict]) -> Dict:
  """Deferred computation tagged with the context it must run in

  A context of None means the action runs in any context.
  """
  return make_value({'context': context, 'thunk': thunk}, "Action")


def make_term(term: Dict) -> Dict:
  return make_value(term, "Term")


def make_ctype(type_name: str) -> Dict:
  return make_value(type_name, "Type")


def make_theorem(prop: Dict, status: str) -> Dict:
  return make_value({'prop': prop, 'status': status}, "Theorem")


def make_proof_result(valid: bool, counterexample: Optional[List] = None) -> Dict:
  return make_value({'valid': valid, 'counterexample': counterexample or []}, "ProofResult")


def make_spec(name: str, variables: List[Dict], pre: List[Dict], post: List[Dict], status: str) -> Dict:
  return make_value({'name': name, 'vars': variables, 'pre': pre, 'post': post, 'status': status}, "Spec")


# ============================================================================
# PREDICATES
# ============================================================================

def is_unit(v: Dict) -> bool:
  return v['type'] == "Unit"


def is_function(v: Dict) -> bool:
  return v['type'] in ("Closure", "Builtin")


def with_trace(v: Dict, name: str) -> Dict:
  """Annotate a function value so errors raised by its application name it"""
  if is_function(v):
    return {**v, 'trace': name}
  return v


# ============================================================================
# DISPLAY
# ============================================================================

def make_pp_opts(ascii_only: bool = False, base: int = 10, color: bool = False) -> Dict:
  """Pretty-printing options stored in the session"""
  return {'ascii': ascii_only, 'base': base, 'color': color}


def show_int(pp_opts: Dict, n: int) -> str:
  base = pp_opts.get('base', 10)
  sign = "-" if n < 0 else ""
  if base == 16:
    return f"{sign}0x{abs(n):x}"
  if base == 8:
    return f"{sign}0o{abs(n):o}"
  if base == 2:
    return f"{sign}0b{abs(n):b}"
  return str(n)


def show_string(s: str) -> str:
  escaped = s.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n').replace('\t', '\\t')
  return f'"{escaped}"'


def show_value(pp_opts: Dict, v: Dict) -> str:
  """Render a value the way `show` and top-level printing display it"""
  tag = v['type']
  payload = v['value']
  if tag == "Unit":
    return "()"
  elif tag == "Bool":
    return "true" if payload else "false"
  elif tag == "Int":
    return show_int(pp_opts, payload)
  elif tag == "String":
    return show_string(payload)
  elif tag == "Array":
    return "[" + ", ".join(show_value(pp_opts, e) for e in payload) + "]"
  elif tag == "Tuple":
    return "(" + ", ".join(show_value(pp_opts, e) for e in payload) + ")"
  elif tag == "Record":
    fields = ", ".join(f"{name} = {show_value(pp_opts, e)}" for name, e in sorted(payload.items()))
    return "{" + fields + "}"
  elif tag in ("Closure", "Builtin"):
    return "<<function>>"
  elif tag == "Action":
    if payload['context']:
      return f"<<{payload['context']} action>>"
    return "<<monadic action>>"
  elif tag == "Term":
    return pretty_term(payload, pp_opts)
  elif tag == "Type":
    return payload
  elif tag == "Theorem":
    return f"Theorem {pretty_term(payload['prop'], pp_opts)}"
  elif tag == "ProofResult":
    return show_proof_result(pp_opts, v)
  elif tag == "Spec":
    return f"<<spec {payload['name']} ({payload['status']})>>"
  return f"<<{tag}>>"


def show_proof_result(pp_opts: Dict, v: Dict) -> str:
  payload = v['value']
  if payload['valid']:
    return "Valid"
  assignment = ", ".join(f"{name} = {_show_concrete(pp_opts, value)}" for name, value in payload['counterexample'])
  return f"Invalid: [{assignment}]"


def _show_concrete(pp_opts: Dict, value: Any) -> str:
  if isinstance(value, bool):
    return "True" if value else "False"
  return show_int(pp_opts, value)


# ============================================================================
# PARTIAL ACCESSORS
# ============================================================================

def index_value(arr: Dict, idx: Dict, span: Optional[Any] = None) -> Dict:
  """Array indexing, failing on non-arrays and out-of-range indices"""
  if arr['type'] != "Array":
    raise VSLRuntimeError(f"index: expected an array, got {arr['type']}", span)
  if idx['type'] != "Int":
    raise VSLRuntimeError(f"index: expected an Int index, got {idx['type']}", span)
  elements = arr['value']
  n = idx['value']
  if n < 0 or n >= len(elements):
    raise VSLRuntimeError(f"index: {n} out of bounds for array of length {len(elements)}", span)
  return elements[n]


def lookup_value(record: Dict, field: str, span: Optional[Any] = None) -> Dict:
  """Record field selection"""
  if record['type'] != "Record":
    raise VSLRuntimeError(f"lookup: expected a record for field {field}, got {record['type']}", span)
  if field not in record['value']:
    raise VSLRuntimeError(f"lookup: record has no field {field}", span)
  return record['value'][field]


def tuple_lookup_value(tup: Dict, index: int, span: Optional[Any] = None) -> Dict:
  """Tuple projection by position"""
  if tup['type'] != "Tuple":
    raise VSLRuntimeError(f"tuple lookup: expected a tuple, got {tup['type']}", span)
  if index >= len(tup['value']):
    raise VSLRuntimeError(f"tuple lookup: index {index} out of range for tuple of size {len(tup['value'])}", span)
  return tup['value'][index]


def values_equal(a: Dict, b: Dict) -> bool:
  """Structural equality, functions and actions are not comparable"""
  if a['type'] in ("Closure", "Builtin", "Action") or b['type'] in ("Closure", "Builtin", "Action"):
    raise VSLRuntimeError("eq: cannot compare functions or actions")
  if a['type'] != b['type']:
    return False
  tag = a['type']
  if tag in ("Array", "Tuple"):
    return len(a['value']) == len(b['value']) and all(
        values_equal(x, y) for x, y in zip(a['value'], b['value']))
  if tag == "Record":
    return set(a['value']) == set(b['value']) and all(
        values_equal(a['value'][k], b['value'][k]) for k in a['value'])
  return a['value'] == b['value']
