"""
VSL Standard Library
The primitive table, lifecycle filtering and the initial session
Pure functional style using immutable dictionaries
"""

from typing import Any, Callable, Dict, Iterable, List
import operator
import time

from error_handling import VSLError, VSLRuntimeError
from parsing import parse_schema, pretty_print_ast
from proofs import PROOF_PRIMITIVES
from semantics import pretty_schema
from session import INFO, get_session, make_session, print_out_top, put_session
from terms import evaluate_term, make_var, pretty_term, term_size
from utilities import (
  binary_arithmetic_op,
  binary_comparison_op,
  expect_type,
  fun_val,
  pure_val,
  top_level,
  validate_function_args
)
from values import (
  index_value, make_action, make_array, make_bool, make_ctype, make_int, make_pp_opts,
  make_string, make_term, make_unit, show_value, values_equal
)


CURRENT = 'Current'
DEPRECATED = 'Deprecated'
EXPERIMENTAL = 'Experimental'

LIFECYCLES = (CURRENT, DEPRECATED, EXPERIMENTAL)


def make_primitive(name: str, schema_text: str, impl: Callable[[Dict, Dict], Dict],
                   life: str, doc: List[str]) -> Dict:
  """Registry entry, the schema is parsed once from surface syntax"""
  if life not in LIFECYCLES:
    raise ValueError(f"unknown lifecycle {life} for primitive {name}")
  return {
      'name': name,
      'schema': parse_schema(schema_text),
      'life': life,
      'doc': doc,
      'impl': impl
  }


# ============================================================================
# LIST FUNCTIONS
# ============================================================================

def vsl_null(arr: Dict) -> Dict:
  return make_bool(len(expect_type("null", arr, "Array")) == 0)


def vsl_nth(arr: Dict, idx: Dict) -> Dict:
  return index_value(arr, idx)


def vsl_head(arr: Dict) -> Dict:
  """First element of an array"""
  elements = expect_type("head", arr, "Array")
  if not elements:
    raise VSLRuntimeError("head: empty list")
  return elements[0]


def vsl_tail(arr: Dict) -> Dict:
  elements = expect_type("tail", arr, "Array")
  if not elements:
    raise VSLRuntimeError("tail: empty list")
  return make_array(elements[1:])


def vsl_concat(xs: Dict, ys: Dict) -> Dict:
  validate_function_args("concat", [xs, ys], ["Array", "Array"])
  return make_array(xs['value'] + ys['value'])


def vsl_length(arr: Dict) -> Dict:
  return make_int(len(expect_type("length", arr, "Array")))


def vsl_str_concat(x: Dict, y: Dict) -> Dict:
  validate_function_args("str_concat", [x, y], ["String", "String"])
  return make_string(x['value'] + y['value'])


# ============================================================================
# ARITHMETIC AND COMPARISON
# ============================================================================

vsl_int_add = binary_arithmetic_op(operator.add, "add")
vsl_int_sub = binary_arithmetic_op(operator.sub, "subtract")
vsl_int_mul = binary_arithmetic_op(operator.mul, "multiply")
vsl_int_div = binary_arithmetic_op(operator.floordiv, "divide", nonzero_divisor=True)
vsl_int_mod = binary_arithmetic_op(operator.mod, "take modulus", nonzero_divisor=True)

vsl_int_lt = binary_comparison_op(operator.lt, "compare")
vsl_int_le = binary_comparison_op(operator.le, "compare")
vsl_int_gt = binary_comparison_op(operator.gt, "compare")
vsl_int_ge = binary_comparison_op(operator.ge, "compare")


def vsl_eq(x: Dict, y: Dict) -> Dict:
  return make_bool(values_equal(x, y))


def vsl_neq(x: Dict, y: Dict) -> Dict:
  return make_bool(not values_equal(x, y))


def vsl_not(b: Dict) -> Dict:
  return make_bool(not expect_type("not", b, "Bool"))


# ============================================================================
# MONADIC COMBINATORS
# ============================================================================

def vsl_return(x: Dict) -> Dict:
  """Action yielding x, runnable in any context"""
  return make_action(None, lambda rc: x)


def for_impl(options: Dict, bic: Dict) -> Dict:
  def vsl_for(arr: Dict, fn: Dict) -> Dict:
    elements = expect_type("for", arr, "Array")

    def thunk(rc):
      results = []
      for element in elements:
        results.append(bic['run_action'](bic['apply'](fn, element, rc, None), rc))
      return make_array(results)
    return make_action(None, thunk)
  return fun_val(2, vsl_for)(options, bic)


# ============================================================================
# PRINTING AND SESSION COMMANDS
# ============================================================================

def vsl_show(v: Dict) -> Dict:
  return make_string(show_value(make_pp_opts(), v))


def vsl_print(v: Dict) -> Dict:
  """Strings print without quotes, everything else as `show` renders it"""
  def thunk(rc):
    if v['type'] == "String":
      text = v['value']
    else:
      text = show_value(get_session(rc)['pp_opts'], v)
    print_out_top(rc, INFO, text)
    return make_unit()
  return top_level(thunk)


def vsl_env(rc: Dict) -> Dict:
  """Print every bound name with its type"""
  session = get_session(rc)
  for name in sorted(session['values']):
    schema = session['types'].get(name)
    print_out_top(rc, INFO, f"{name} : {pretty_schema(schema)}" if schema else name)
  return make_unit()


def vsl_help(name: Dict) -> Dict:
  def thunk(rc):
    key = expect_type("help", name, "String")
    doc = get_session(rc)['docs'].get(key)
    print_out_top(rc, INFO, doc if doc is not None else f"No help for {key}")
    return make_unit()
  return top_level(thunk)


def include_impl(options: Dict, bic: Dict) -> Dict:
  def vsl_include(path: Dict) -> Dict:
    def thunk(rc):
      bic['interpret_file'](rc, expect_type("include", path, "String"))
      return make_unit()
    return top_level(thunk)
  return fun_val(1, vsl_include)(options, bic)


def enable_impl(tag: str) -> Callable[[Dict, Dict], Dict]:
  def impl(options: Dict, bic: Dict) -> Dict:
    def thunk(rc):
      put_session(rc, add_primitives(get_session(rc), tag, options, bic))
      return make_unit()
    return top_level(thunk)
  return impl


def set_pp_option(func_name: str, key: str, tag: str, check: Callable[[Any], bool] = None):
  """Command updating one pretty-printing option in the session"""
  def setter(v: Dict) -> Dict:
    def thunk(rc):
      payload = expect_type(func_name, v, tag)
      if check is not None and not check(payload):
        raise VSLRuntimeError(f"{func_name}: unsupported value {payload}")
      session = get_session(rc)
      put_session(rc, {**session, 'pp_opts': {**session['pp_opts'], key: payload}})
      return make_unit()
    return top_level(thunk)
  return setter


def fails_impl(options: Dict, bic: Dict) -> Dict:
  def vsl_fails(action: Dict) -> Dict:
    """Succeed only when the action fails"""
    def thunk(rc):
      try:
        bic['run_action'](action, rc)
      except VSLError as e:
        print_out_top(rc, INFO, "== Anticipated failure message ==")
        print_out_top(rc, INFO, str(e))
        return make_unit()
      raise VSLRuntimeError("Expected failure, but succeeded")
    return top_level(thunk)
  return fun_val(1, vsl_fails)(options, bic)


def time_impl(options: Dict, bic: Dict) -> Dict:
  def vsl_time(action: Dict) -> Dict:
    def thunk(rc):
      start = time.perf_counter()
      result = bic['run_action'](action, rc)
      print_out_top(rc, INFO, f"Time: {time.perf_counter() - start:.3f}s")
      return result
    return top_level(thunk)
  return fun_val(1, vsl_time)(options, bic)


def vsl_exit(code: Dict) -> Dict:
  def thunk(rc):
    raise SystemExit(expect_type("exit", code, "Int"))
  return top_level(thunk)


def dump_file_ast_impl(options: Dict, bic: Dict) -> Dict:
  def dump_file_ast(path: Dict) -> Dict:
    def thunk(rc):
      for stmt in bic['parse_file'](expect_type("dump_file_AST", path, "String")):
        print_out_top(rc, INFO, pretty_print_ast(stmt))
      return make_unit()
    return top_level(thunk)
  return fun_val(1, dump_file_ast)(options, bic)


# ============================================================================
# TERMS
# ============================================================================

def vsl_fresh_symbolic(name: Dict, term_type: Dict) -> Dict:
  def thunk(rc):
    return make_term(make_var(expect_type("fresh_symbolic", name, "String"),
                              expect_type("fresh_symbolic", term_type, "Type")))
  return top_level(thunk)


def concrete_term(func_name: str, v: Dict, expected: str) -> Any:
  term = expect_type(func_name, v, "Term")
  if term['type'] != expected:
    raise VSLRuntimeError(f"{func_name}: expected a term of type {expected}, got {term['type']}")
  return evaluate_term(term)


def vsl_eval_int(v: Dict) -> Dict:
  return make_int(concrete_term("eval_int", v, "Integer"))


def vsl_eval_bool(v: Dict) -> Dict:
  return make_bool(concrete_term("eval_bool", v, "Bit"))


def vsl_show_term(v: Dict) -> Dict:
  return make_string(pretty_term(expect_type("show_term", v, "Term"), make_pp_opts()))


def vsl_print_term(v: Dict) -> Dict:
  def thunk(rc):
    print_out_top(rc, INFO, pretty_term(expect_type("print_term", v, "Term"), get_session(rc)['pp_opts']))
    return make_unit()
  return top_level(thunk)


def vsl_print_type(v: Dict) -> Dict:
  def thunk(rc):
    print_out_top(rc, INFO, expect_type("print_type", v, "Term")['type'])
    return make_unit()
  return top_level(thunk)


def vsl_type(v: Dict) -> Dict:
  return make_ctype(expect_type("type", v, "Term")['type'])


def vsl_term_size(v: Dict) -> Dict:
  return make_int(term_size(expect_type("term_size", v, "Term")))


def vsl_define(name: Dict, v: Dict) -> Dict:
  """Name a term so later inline terms can refer to it"""
  def thunk(rc):
    key = expect_type("define", name, "String")
    term = expect_type("define", v, "Term")
    session = get_session(rc)
    put_session(rc, {**session, 'term_env': {**session['term_env'], key: term}})
    return make_term(term)
  return top_level(thunk)


# ============================================================================
# PRIMITIVE TABLE
# ============================================================================

GENERIC_PRIMITIVES = [
    ("return", "{m, a} a -> m a", fun_val(1, vsl_return), CURRENT,
     ["Yield a value in any monadic context."]),
    ("true", "Bool", pure_val(make_bool(True)), CURRENT, ["The boolean true."]),
    ("false", "Bool", pure_val(make_bool(False)), CURRENT, ["The boolean false."]),
    ("for", "{m, a, b} [a] -> (a -> m b) -> m [b]", for_impl, CURRENT,
     ["Run an action for each element of a list, collecting the results."]),
    ("null", "{a} [a] -> Bool", fun_val(1, vsl_null), CURRENT, ["Test whether a list is empty."]),
    ("nth", "{a} [a] -> Int -> a", fun_val(2, vsl_nth), CURRENT,
     ["Look up the element at a zero-based index of a list."]),
    ("head", "{a} [a] -> a", fun_val(1, vsl_head), CURRENT, ["First element of a non-empty list."]),
    ("tail", "{a} [a] -> [a]", fun_val(1, vsl_tail), CURRENT, ["All but the first element of a non-empty list."]),
    ("concat", "{a} [a] -> [a] -> [a]", fun_val(2, vsl_concat), CURRENT, ["Concatenate two lists."]),
    ("length", "{a} [a] -> Int", fun_val(1, vsl_length), CURRENT, ["Number of elements of a list."]),
    ("str_concat", "String -> String -> String", fun_val(2, vsl_str_concat), CURRENT,
     ["Concatenate two strings."]),
    ("int_add", "Int -> Int -> Int", fun_val(2, vsl_int_add), CURRENT, ["Integer addition, also written +."]),
    ("int_sub", "Int -> Int -> Int", fun_val(2, vsl_int_sub), CURRENT, ["Integer subtraction, also written -."]),
    ("int_mul", "Int -> Int -> Int", fun_val(2, vsl_int_mul), CURRENT, ["Integer multiplication, also written *."]),
    ("int_div", "Int -> Int -> Int", fun_val(2, vsl_int_div), CURRENT,
     ["Integer division rounding down, also written /."]),
    ("int_mod", "Int -> Int -> Int", fun_val(2, vsl_int_mod), CURRENT, ["Integer remainder, also written %."]),
    ("int_lt", "Int -> Int -> Bool", fun_val(2, vsl_int_lt), CURRENT, ["Less than, also written <."]),
    ("int_le", "Int -> Int -> Bool", fun_val(2, vsl_int_le), CURRENT, ["Less than or equal, also written <=."]),
    ("int_gt", "Int -> Int -> Bool", fun_val(2, vsl_int_gt), CURRENT, ["Greater than, also written >."]),
    ("int_ge", "Int -> Int -> Bool", fun_val(2, vsl_int_ge), CURRENT, ["Greater than or equal, also written >=."]),
    ("eq", "{a} a -> a -> Bool", fun_val(2, vsl_eq), CURRENT,
     ["Structural equality, also written ==. Functions cannot be compared."]),
    ("neq", "{a} a -> a -> Bool", fun_val(2, vsl_neq), CURRENT, ["Structural inequality, also written !=."]),
    ("not", "Bool -> Bool", fun_val(1, vsl_not), CURRENT, ["Boolean negation."]),
    ("show", "{a} a -> String", fun_val(1, vsl_show), CURRENT, ["Render a value as a string."]),
    ("print", "{a} a -> TopLevel ()", fun_val(1, vsl_print), CURRENT, ["Print a value."]),
    ("env", "TopLevel ()", pure_val(top_level(vsl_env)), CURRENT,
     ["Print every name in scope with its type."]),
    ("help", "String -> TopLevel ()", fun_val(1, vsl_help), CURRENT,
     ["Print the documentation of a primitive."]),
    ("include", "String -> TopLevel ()", include_impl, CURRENT,
     ["Run the statements of another script file in the current session."]),
    ("enable_deprecated", "TopLevel ()", enable_impl(DEPRECATED), CURRENT,
     ["Make deprecated primitives available."]),
    ("enable_experimental", "TopLevel ()", enable_impl(EXPERIMENTAL), CURRENT,
     ["Make experimental primitives available."]),
    ("set_ascii", "Bool -> TopLevel ()", fun_val(1, set_pp_option("set_ascii", 'ascii', "Bool")), CURRENT,
     ["Print terms using only ASCII characters."]),
    ("set_base", "Int -> TopLevel ()",
     fun_val(1, set_pp_option("set_base", 'base', "Int", lambda b: b in (2, 8, 10, 16))), CURRENT,
     ["Set the base used to print integers, one of 2, 8, 10 or 16."]),
    ("set_color", "Bool -> TopLevel ()", fun_val(1, set_pp_option("set_color", 'color', "Bool")), CURRENT,
     ["Print terms with ANSI colors."]),
    ("fails", "{a} TopLevel a -> TopLevel ()", fails_impl, CURRENT,
     ["Run an action that is expected to fail, failing if it succeeds."]),
    ("time", "{a} TopLevel a -> TopLevel a", time_impl, CURRENT,
     ["Run an action and print how long it took."]),
    ("exit", "Int -> TopLevel ()", fun_val(1, vsl_exit), CURRENT, ["Exit the interpreter with a status code."]),
    ("dump_file_AST", "String -> TopLevel ()", dump_file_ast_impl, DEPRECATED,
     ["Print the syntax tree of a script file."]),
    ("fresh_symbolic", "String -> Type -> TopLevel Term", fun_val(2, vsl_fresh_symbolic), CURRENT,
     ["Create a fresh symbolic variable of the given type."]),
    ("eval_int", "Term -> Int", fun_val(1, vsl_eval_int), CURRENT, ["Evaluate a closed Integer term."]),
    ("eval_bool", "Term -> Bool", fun_val(1, vsl_eval_bool), CURRENT, ["Evaluate a closed Bit term."]),
    ("show_term", "Term -> String", fun_val(1, vsl_show_term), CURRENT, ["Render a term as a string."]),
    ("print_term", "Term -> TopLevel ()", fun_val(1, vsl_print_term), CURRENT, ["Print a term."]),
    ("print_type", "Term -> TopLevel ()", fun_val(1, vsl_print_type), CURRENT, ["Print the type of a term."]),
    ("type", "Term -> Type", fun_val(1, vsl_type), CURRENT, ["The type of a term."]),
    ("term_size", "Term -> Int", fun_val(1, vsl_term_size), CURRENT, ["Number of nodes of a term."]),
    ("define", "String -> Term -> TopLevel Term", fun_val(2, vsl_define), CURRENT,
     ["Give a term a name usable inside later inline terms."]),
]

PRIMITIVES: Dict[str, Dict] = {
    name: make_primitive(name, schema, impl, life, doc)
    for name, schema, impl, life, doc in GENERIC_PRIMITIVES + PROOF_PRIMITIVES
}


# ============================================================================
# REGISTRY VIEWS
# ============================================================================

def filter_avail(tags: Iterable[str]) -> Dict[str, Dict]:
  """Primitives whose lifecycle is among tags"""
  tags = frozenset(tags)
  return {name: prim for name, prim in PRIMITIVES.items() if prim['life'] in tags}


def prim_type_env(tags: Iterable[str]) -> Dict[str, Dict]:
  return {name: prim['schema'] for name, prim in filter_avail(tags).items()}


def value_env(options: Dict, bic: Dict, tags: Iterable[str]) -> Dict[str, Dict]:
  """Runtime values of the available primitives, named for error traces"""
  values = {}
  for name, prim in filter_avail(tags).items():
    v = prim['impl'](options, bic)
    if v['type'] == "Builtin":
      v = {**v, 'value': {**v['value'], 'name': name}}
    values[name] = v
  return values


def format_doc(prim: Dict) -> str:
  """Help text of a primitive"""
  lines = ["Description", "-----------", ""]
  if prim['life'] == DEPRECATED:
    lines += ["DEPRECATED AND WILL SOON BE REMOVED", ""]
  elif prim['life'] == EXPERIMENTAL:
    lines += ["EXPERIMENTAL", ""]
  lines += [f"    {prim['name']} : {pretty_schema(prim['schema'])}", ""]
  lines += prim['doc']
  return "\n".join(lines)


def prim_doc_env(tags: Iterable[str]) -> Dict[str, str]:
  return {name: format_doc(prim) for name, prim in filter_avail(tags).items()}


def initial_session(options: Dict, bic: Dict) -> Dict:
  """Fresh session with the Current primitives bound"""
  tags = frozenset([CURRENT])
  session = make_session(
      values=value_env(options, bic, tags),
      types=prim_type_env(tags),
      docs=prim_doc_env(tags),
      prims_avail=tags
  )
  return {**session, 'pp_opts': make_pp_opts(color=options['use_color'])}


def add_primitives(session: Dict, tag: str, options: Dict, bic: Dict) -> Dict:
  """Reveal the primitives of one more lifecycle

  Names already bound in the session keep their binding.
  """
  only = frozenset([tag])
  return {
      **session,
      'values': {**value_env(options, bic, only), **session['values']},
      'types': {**prim_type_env(only), **session['types']},
      'docs': {**prim_doc_env(only), **session['docs']},
      'prims_avail': session['prims_avail'] | only
  }
