"""
VSL Semantics Analysis - Pure Functional Style
Types and schemas are plain dictionaries, checking threads an explicit state
"""

from typing import Any, Dict, List, Optional, Tuple
from error_handling import VSLTypeError


CONTEXTS = ('TopLevel', 'ProofScript', 'Setup')
BASE_TYPES = ('Int', 'Bool', 'String', 'Term', 'Type', 'Theorem', 'ProofResult', 'Spec')
STRUCTURAL_TYPES = ('Function', 'Tuple', 'List', 'Block')


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_type_info(name: str, parameters: Optional[List[Dict]] = None) -> Dict:
  """Create an immutable type constructor application"""
  return {
      'kind': 'con',
      'name': name,
      'parameters': parameters or []
  }


def make_type_var(name: str) -> Dict:
  """Create a named (rigid or quantified) type variable"""
  return {'kind': 'var', 'name': name}


def make_meta(ident: int) -> Dict:
  """Create a unification variable"""
  return {'kind': 'meta', 'id': ident}


def make_record_type(fields: Dict[str, Dict]) -> Dict:
  """Create a record type from a field name to type mapping"""
  return {'kind': 'record', 'fields': dict(fields)}


def make_schema(variables: List[str], type_info: Dict) -> Dict:
  """Create a type schema quantified over the given variables"""
  return {'vars': list(variables), 'type': type_info}


def mono(type_info: Dict) -> Dict:
  """Schema without quantified variables"""
  return make_schema([], type_info)


def t_int() -> Dict:
  return make_type_info('Int')


def t_bool() -> Dict:
  return make_type_info('Bool')


def t_string() -> Dict:
  return make_type_info('String')


def t_term() -> Dict:
  return make_type_info('Term')


def t_ctype() -> Dict:
  return make_type_info('Type')


def t_unit() -> Dict:
  return make_type_info('Tuple')


def t_tuple(elements: List[Dict]) -> Dict:
  return make_type_info('Tuple', list(elements))


def t_list(element: Dict) -> Dict:
  return make_type_info('List', [element])


def t_fun(arg: Dict, result: Dict) -> Dict:
  return make_type_info('Function', [arg, result])


def t_context(name: str) -> Dict:
  return make_type_info(name)


def t_block(context: Dict, result: Dict) -> Dict:
  """Monadic computation type: `context result`"""
  return make_type_info('Block', [context, result])


def is_block_type(type_info: Dict, context: Optional[str] = None) -> bool:
  """Check whether a type is a block, optionally in a given context"""
  if type_info['kind'] != 'con' or type_info['name'] != 'Block':
    return False
  if context is None:
    return True
  ctx = type_info['parameters'][0]
  return ctx['kind'] == 'con' and ctx['name'] == context


def is_function_type(type_info: Dict) -> bool:
  return type_info['kind'] == 'con' and type_info['name'] == 'Function'


# ============================================================================
# PRETTY PRINTING
# ============================================================================

def _pretty_atom(type_info: Dict) -> str:
  """Pretty print a type in argument position"""
  text = pretty_type(type_info)
  if type_info['kind'] == 'con' and type_info['name'] in ('Function', 'Block'):
    return f"({text})"
  return text


def pretty_type(type_info: Dict) -> str:
  """Render a type in surface syntax"""
  kind = type_info['kind']
  if kind == 'var':
    return type_info['name']
  if kind == 'meta':
    return f"?{type_info['id']}"
  if kind == 'record':
    fields = ', '.join(f"{name} : {pretty_type(t)}" for name, t in sorted(type_info['fields'].items()))
    return "{" + fields + "}"

  name = type_info['name']
  params = type_info['parameters']
  if name == 'Function':
    arg, result = params
    arg_text = pretty_type(arg)
    if is_function_type(arg):
      arg_text = f"({arg_text})"
    return f"{arg_text} -> {pretty_type(result)}"
  if name == 'Tuple':
    return "(" + ", ".join(pretty_type(p) for p in params) + ")"
  if name == 'List':
    return f"[{pretty_type(params[0])}]"
  if name == 'Block':
    return f"{pretty_type(params[0])} {_pretty_atom(params[1])}"
  return name


def pretty_schema(schema: Dict) -> str:
  """Render a schema, listing quantified variables in braces"""
  if schema['vars']:
    return "{" + ", ".join(schema['vars']) + "} " + pretty_type(schema['type'])
  return pretty_type(schema['type'])


# ============================================================================
# TYPE OPERATIONS (Pure Functions)
# ============================================================================

def substitute_vars(type_info: Dict, mapping: Dict[str, Dict]) -> Dict:
  """Replace named type variables according to mapping"""
  kind = type_info['kind']
  if kind == 'var':
    return mapping.get(type_info['name'], type_info)
  if kind == 'con':
    return {**type_info, 'parameters': [substitute_vars(p, mapping) for p in type_info['parameters']]}
  if kind == 'record':
    return {**type_info, 'fields': {k: substitute_vars(t, mapping) for k, t in type_info['fields'].items()}}
  return type_info


def type_var_names(type_info: Dict) -> List[str]:
  """Named type variables in order of first occurrence"""
  names: List[str] = []

  def walk(t: Dict) -> None:
    if t['kind'] == 'var':
      if t['name'] not in names:
        names.append(t['name'])
    elif t['kind'] == 'con':
      for p in t['parameters']:
        walk(p)
    elif t['kind'] == 'record':
      for _, ft in sorted(t['fields'].items()):
        walk(ft)

  walk(type_info)
  return names


def resolve_type(typedefs: Dict[str, Dict], type_info: Dict, span: Optional[Any] = None) -> Dict:
  """Expand type aliases and reject unknown type names"""
  kind = type_info['kind']
  if kind == 'record':
    return {**type_info, 'fields': {k: resolve_type(typedefs, t, span) for k, t in type_info['fields'].items()}}
  if kind != 'con':
    return type_info

  name = type_info['name']
  params = [resolve_type(typedefs, p, span) for p in type_info['parameters']]
  if name in BASE_TYPES or name in STRUCTURAL_TYPES or name in CONTEXTS:
    return {**type_info, 'parameters': params}
  if name in typedefs:
    if params:
      raise VSLTypeError(f"type alias {name} takes no parameters", span)
    return typedefs[name]
  raise VSLTypeError(f"unbound type name: {name}", span)


def distribute_schema(pattern: Dict, schema: Optional[Dict]) -> List[Tuple[str, Optional[Dict]]]:
  """Pair every variable of a pattern with its part of the schema

  A tuple schema is split element-wise over a tuple pattern, any other
  schema leaves the elements without one.
  """
  node_type = pattern['type']
  if node_type == 'PATTERN_WILDCARD':
    return []
  if node_type == 'PATTERN_VAR':
    return [(pattern['value'], schema)]
  if node_type == 'PATTERN_LOCATED':
    return distribute_schema(pattern['children'][0], schema)

  elements = pattern['children']
  parts: List[Optional[Dict]] = [None] * len(elements)
  if schema is not None:
    t = schema['type']
    if t['kind'] == 'con' and t['name'] == 'Tuple' and len(t['parameters']) == len(elements):
      parts = [make_schema(schema['vars'], p) for p in t['parameters']]
  result = []
  for element, part in zip(elements, parts):
    result.extend(distribute_schema(element, part))
  return result


def pattern_names(pattern: Dict) -> List[str]:
  """Variables bound by a pattern, left to right"""
  return [name for name, _ in distribute_schema(pattern, None)]


def pattern_annotation(pattern: Dict) -> Optional[Dict]:
  """Declared type on a pattern, looking through located wrappers"""
  while pattern['type'] == 'PATTERN_LOCATED' and not pattern.get('type_info'):
    pattern = pattern['children'][0]
  return pattern.get('type_info')


def is_wildcard(pattern: Dict) -> bool:
  while pattern['type'] == 'PATTERN_LOCATED':
    pattern = pattern['children'][0]
  return pattern['type'] == 'PATTERN_WILDCARD'


# ============================================================================
# CHECKER STATE
# ============================================================================

def make_checker_state(debug: bool = False) -> Dict:
  """Mutable substitution and meta counter for one check"""
  return {'subst': {}, 'next_meta': 0, 'debug': debug}


def make_type_env(types: Dict[str, Dict], typedefs: Dict[str, Dict]) -> Dict:
  """Names to schemas plus the visible type aliases"""
  return {'types': types, 'typedefs': typedefs}


def env_bind(tenv: Dict, name: str, schema: Dict) -> Dict:
  """Return new type environment with name bound to schema"""
  return {**tenv, 'types': {**tenv['types'], name: schema}}


def env_bind_type(tenv: Dict, name: str, type_info: Dict) -> Dict:
  """Return new type environment with a type alias bound"""
  return {**tenv, 'typedefs': {**tenv['typedefs'], name: type_info}}


def fresh_meta(state: Dict) -> Dict:
  meta = make_meta(state['next_meta'])
  state['next_meta'] += 1
  return meta


def prune(state: Dict, type_info: Dict) -> Dict:
  """Follow the substitution for a meta variable"""
  while type_info['kind'] == 'meta' and type_info['id'] in state['subst']:
    type_info = state['subst'][type_info['id']]
  return type_info


def zonk(state: Dict, type_info: Dict) -> Dict:
  """Apply the substitution everywhere inside a type"""
  type_info = prune(state, type_info)
  if type_info['kind'] == 'con':
    return {**type_info, 'parameters': [zonk(state, p) for p in type_info['parameters']]}
  if type_info['kind'] == 'record':
    return {**type_info, 'fields': {k: zonk(state, t) for k, t in type_info['fields'].items()}}
  return type_info


def free_metas(state: Dict, type_info: Dict) -> List[int]:
  result: List[int] = []

  def walk(t: Dict) -> None:
    t = prune(state, t)
    if t['kind'] == 'meta':
      if t['id'] not in result:
        result.append(t['id'])
    elif t['kind'] == 'con':
      for p in t['parameters']:
        walk(p)
    elif t['kind'] == 'record':
      for _, ft in sorted(t['fields'].items()):
        walk(ft)

  walk(type_info)
  return result


def unify(state: Dict, expected: Dict, actual: Dict, span: Optional[Any] = None) -> None:
  """Unify two types or raise a type mismatch"""
  a = prune(state, expected)
  b = prune(state, actual)

  if a['kind'] == 'meta' and b['kind'] == 'meta' and a['id'] == b['id']:
    return
  if a['kind'] == 'meta':
    _bind_meta(state, a, b, span)
    return
  if b['kind'] == 'meta':
    _bind_meta(state, b, a, span)
    return
  if a['kind'] == 'var' and b['kind'] == 'var' and a['name'] == b['name']:
    return
  if a['kind'] == 'con' and b['kind'] == 'con':
    if a['name'] == b['name'] and len(a['parameters']) == len(b['parameters']):
      for pa, pb in zip(a['parameters'], b['parameters']):
        unify(state, pa, pb, span)
      return
  if a['kind'] == 'record' and b['kind'] == 'record':
    if set(a['fields']) == set(b['fields']):
      for name in sorted(a['fields']):
        unify(state, a['fields'][name], b['fields'][name], span)
      return

  raise VSLTypeError(
      f"type mismatch: expected {pretty_type(zonk(state, expected))} but got {pretty_type(zonk(state, actual))}",
      span)


def _bind_meta(state: Dict, meta: Dict, type_info: Dict, span: Optional[Any]) -> None:
  if meta['id'] in free_metas(state, type_info):
    raise VSLTypeError(f"occurs check: cannot construct infinite type {pretty_type(zonk(state, type_info))}", span)
  state['subst'][meta['id']] = type_info


def instantiate(state: Dict, schema: Dict) -> Dict:
  """Replace quantified variables with fresh metas"""
  mapping = {name: fresh_meta(state) for name in schema['vars']}
  return substitute_vars(schema['type'], mapping)


def generalize(state: Dict, tenv: Dict, type_info: Dict) -> Dict:
  """Quantify over metas and rigid variables not free in the environment"""
  type_info = zonk(state, type_info)
  env_metas = set()
  for schema in tenv['types'].values():
    env_metas.update(free_metas(state, schema['type']))

  rigid = type_var_names(type_info)
  used = set(rigid)
  mapping = {}
  letters = iter(_variable_names())
  for ident in free_metas(state, type_info):
    if ident in env_metas:
      continue
    name = next(letters)
    while name in used:
      name = next(letters)
    used.add(name)
    mapping[ident] = make_type_var(name)

  for ident, var in mapping.items():
    state['subst'][ident] = var
  generalized = zonk(state, type_info)
  for ident in mapping:
    del state['subst'][ident]
  return make_schema(rigid + [v['name'] for v in mapping.values()], generalized)


def _variable_names():
  letters = "abcdefghijklmnopqrstuvwxyz"
  for c in letters:
    yield c
  n = 1
  while True:
    for c in letters:
      yield f"{c}{n}"
    n += 1


# ============================================================================
# EXPRESSION INFERENCE
# ============================================================================

def infer_expr(state: Dict, tenv: Dict, expr: Dict) -> Dict:
  """Infer the type of an expression node"""
  node_type = expr['type']
  span = expr.get('span')

  if state['debug']:
    print(f"Checking: {node_type}")

  if node_type == "BOOL":
    return t_bool()
  elif node_type == "INT":
    return t_int()
  elif node_type == "STRING":
    return t_string()
  elif node_type == "CODE":
    return t_term()
  elif node_type == "CTYPE":
    return t_ctype()
  elif node_type == "ARRAY":
    element = fresh_meta(state)
    for child in expr['children']:
      unify(state, element, infer_expr(state, tenv, child), child.get('span'))
    return t_list(element)
  elif node_type == "TUPLE":
    return t_tuple([infer_expr(state, tenv, child) for child in expr['children']])
  elif node_type == "RECORD":
    names = expr['value']
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
      raise VSLTypeError(f"duplicate record field: {duplicates[0]}", span)
    return make_record_type({n: infer_expr(state, tenv, c) for n, c in zip(names, expr['children'])})
  elif node_type == "INDEX":
    array, index = expr['children']
    element = fresh_meta(state)
    unify(state, t_list(element), infer_expr(state, tenv, array), array.get('span'))
    unify(state, t_int(), infer_expr(state, tenv, index), index.get('span'))
    return element
  elif node_type == "LOOKUP":
    return infer_lookup(state, tenv, expr)
  elif node_type == "TLOOKUP":
    return infer_tuple_lookup(state, tenv, expr)
  elif node_type == "VAR":
    name = expr['value']
    if name not in tenv['types']:
      raise VSLTypeError(f"unbound variable: {name}", span)
    return instantiate(state, tenv['types'][name])
  elif node_type == "FUNCTION":
    arg_type, binds = infer_pattern(state, tenv, expr['value'])
    inner = tenv
    for name, t in binds:
      inner = env_bind(inner, name, mono(t))
    return t_fun(arg_type, infer_expr(state, inner, expr['children'][0]))
  elif node_type == "APPLICATION":
    fn, arg = expr['children']
    fn_type = infer_expr(state, tenv, fn)
    arg_type = infer_expr(state, tenv, arg)
    result = fresh_meta(state)
    unify(state, t_fun(arg_type, result), fn_type, span)
    return result
  elif node_type == "LET":
    _, inner = check_group(state, tenv, expr['value'])
    return infer_expr(state, inner, expr['children'][0])
  elif node_type == "TSIG":
    declared = resolve_type(tenv['typedefs'], expr['value'], span)
    unify(state, declared, infer_expr(state, tenv, expr['children'][0]), span)
    return declared
  elif node_type == "IF":
    cond, then_branch, else_branch = expr['children']
    unify(state, t_bool(), infer_expr(state, tenv, cond), cond.get('span'))
    result = infer_expr(state, tenv, then_branch)
    unify(state, result, infer_expr(state, tenv, else_branch), else_branch.get('span'))
    return result
  elif node_type == "BLOCK":
    return infer_block(state, tenv, expr['children'], span)
  elif node_type == "LOCATED":
    return infer_expr(state, tenv, expr['children'][0])
  raise VSLTypeError(f"cannot check expression node {node_type}", span)


def infer_lookup(state: Dict, tenv: Dict, expr: Dict) -> Dict:
  """Record field selection requires the record type to be known"""
  field = expr['value']
  record = zonk(state, infer_expr(state, tenv, expr['children'][0]))
  if record['kind'] == 'record':
    if field not in record['fields']:
      raise VSLTypeError(f"record {pretty_type(record)} has no field {field}", expr.get('span'))
    return record['fields'][field]
  if record['kind'] == 'meta':
    raise VSLTypeError(f"cannot infer the record type for field lookup .{field}", expr.get('span'))
  raise VSLTypeError(f"field lookup .{field} on non-record type {pretty_type(record)}", expr.get('span'))


def infer_tuple_lookup(state: Dict, tenv: Dict, expr: Dict) -> Dict:
  """Tuple projection requires the tuple type to be known"""
  index = expr['value']
  target = zonk(state, infer_expr(state, tenv, expr['children'][0]))
  if target['kind'] == 'con' and target['name'] == 'Tuple':
    if index >= len(target['parameters']):
      raise VSLTypeError(f"tuple index {index} out of range for {pretty_type(target)}", expr.get('span'))
    return target['parameters'][index]
  if target['kind'] == 'meta':
    raise VSLTypeError(f"cannot infer the tuple type for projection .{index}", expr.get('span'))
  raise VSLTypeError(f"tuple projection .{index} on non-tuple type {pretty_type(target)}", expr.get('span'))


def infer_pattern(state: Dict, tenv: Dict, pattern: Dict) -> Tuple[Dict, List[Tuple[str, Dict]]]:
  """Infer a pattern's type and the monomorphic types of its variables"""
  node_type = pattern['type']
  declared = pattern.get('type_info')
  if declared is not None:
    declared = resolve_type(tenv['typedefs'], declared, pattern.get('span'))

  if node_type == 'PATTERN_WILDCARD':
    return (declared or fresh_meta(state)), []
  if node_type == 'PATTERN_VAR':
    t = declared or fresh_meta(state)
    return t, [(pattern['value'], t)]

  if node_type == 'PATTERN_LOCATED':
    t, binds = infer_pattern(state, tenv, pattern['children'][0])
  else:
    types = []
    binds = []
    for element in pattern['children']:
      et, eb = infer_pattern(state, tenv, element)
      types.append(et)
      binds.extend(eb)
    t = t_tuple(types)
  if declared is not None:
    unify(state, declared, t, pattern.get('span'))
  return t, binds


# ============================================================================
# BLOCK AND DECLARATION CHECKING
# ============================================================================

def infer_block(state: Dict, tenv: Dict, stmts: List[Dict], span: Optional[Any] = None) -> Dict:
  """Every bind runs in one shared context, the last statement gives the result"""
  if not stmts:
    raise VSLTypeError("empty block", span)

  context = fresh_meta(state)
  result = None
  for i, stmt in enumerate(stmts):
    last = i == len(stmts) - 1
    node_type = stmt['type']
    stmt_span = stmt.get('span')

    if node_type == 'STMT_BIND':
      pattern = stmt['value']
      expr_type = infer_expr(state, tenv, stmt['children'][0])
      value_type = fresh_meta(state)
      unify(state, t_block(context, value_type), expr_type, stmt_span)
      pattern_type, binds = infer_pattern(state, tenv, pattern)
      unify(state, pattern_type, value_type, stmt_span)
      for name, t in binds:
        tenv = env_bind(tenv, name, mono(t))
      if last:
        if not is_wildcard(pattern):
          raise VSLTypeError("the last statement in a do block must be an expression", stmt_span)
        result = value_type
    elif last:
      raise VSLTypeError("the last statement in a do block must be an expression", stmt_span)
    elif node_type == 'STMT_LET':
      _, tenv = check_group(state, tenv, stmt['value'])
    elif node_type == 'STMT_TYPEDEF':
      name = stmt['value']['name']
      tenv = env_bind_type(tenv, name, resolve_type(tenv['typedefs'], stmt['value']['type'], stmt_span))

  return t_block(context, result)


def check_group(state: Dict, tenv: Dict, group: Dict) -> Tuple[Dict, Dict]:
  """Check a declaration group, returning it annotated and the extended environment"""
  if group['value'] == 'rec':
    return _check_rec_group(state, tenv, group)

  decl = _check_single(state, tenv, group['children'][0], top_level=False)
  for name, schema in distribute_schema(decl['value'], decl['type_info']):
    tenv = env_bind(tenv, name, schema)
  return {**group, 'children': [decl]}, tenv


def _check_single(state: Dict, tenv: Dict, decl: Dict, top_level: bool) -> Dict:
  pattern = decl['value']
  expr_type = infer_expr(state, tenv, decl['children'][0])
  pattern_type, _ = infer_pattern(state, tenv, pattern)
  unify(state, pattern_type, expr_type, decl.get('span'))

  if top_level:
    t = prune(state, expr_type)
    if is_block_type(t):
      context = prune(state, t['parameters'][0])
      if context['kind'] == 'meta':
        unify(state, t_context('TopLevel'), context, decl.get('span'))

  return {**decl, 'type_info': generalize(state, tenv, expr_type)}


def _check_rec_group(state: Dict, tenv: Dict, group: Dict) -> Tuple[Dict, Dict]:
  decls = group['children']
  rec_env = tenv
  metas = []
  for decl in decls:
    names = pattern_names(decl['value'])
    if len(names) != 1 or decl['value']['type'] == 'PATTERN_TUPLE':
      raise VSLTypeError("recursive declarations must bind a single name", decl.get('span'))
    t, _ = infer_pattern(state, tenv, decl['value'])
    metas.append(t)
    rec_env = env_bind(rec_env, names[0], mono(t))

  for decl, t in zip(decls, metas):
    unify(state, t, infer_expr(state, rec_env, decl['children'][0]), decl.get('span'))

  annotated = []
  for decl, t in zip(decls, metas):
    schema = generalize(state, tenv, t)
    annotated.append({**decl, 'type_info': schema})
  for decl in annotated:
    tenv = env_bind(tenv, pattern_names(decl['value'])[0], decl['type_info'])
  return {**group, 'children': annotated}, tenv


# ============================================================================
# MAIN CHECKING FUNCTIONS
# ============================================================================

def check_decl(types: Dict[str, Dict], typedefs: Dict[str, Dict], decl: Dict,
               top_level: bool = False, debug: bool = False) -> Dict:
  """Infer the schema of one declaration and attach it as type_info

  Args:
    types: Schemas of the names in scope
    typedefs: Visible type aliases
    decl: DECL node
    top_level: Resolve an undetermined block context to TopLevel

  Returns:
    The declaration with its generalized schema attached
  """
  state = make_checker_state(debug)
  return _check_single(state, make_type_env(types, typedefs), decl, top_level)


def check_decl_group(types: Dict[str, Dict], typedefs: Dict[str, Dict], group: Dict,
                     debug: bool = False) -> Dict:
  """Check a (possibly recursive) declaration group"""
  state = make_checker_state(debug)
  annotated, _ = check_group(state, make_type_env(types, typedefs), group)
  return annotated


def check_expr(types: Dict[str, Dict], typedefs: Dict[str, Dict], expr: Dict,
               debug: bool = False) -> Dict:
  """Infer the generalized schema of an expression"""
  state = make_checker_state(debug)
  tenv = make_type_env(types, typedefs)
  return generalize(state, tenv, infer_expr(state, tenv, expr))


def check_type(typedefs: Dict[str, Dict], type_info: Dict, span: Optional[Any] = None) -> Dict:
  """Validate a type written in a typedef or annotation"""
  return resolve_type(typedefs, type_info, span)
