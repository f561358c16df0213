"""
VSL inline term language
Integer and boolean terms written inside {{ ... }}, with elaboration,
concrete evaluation, simplification and Coq export
"""

from typing import Any, Dict, List, Optional, Tuple

from pyparsing import (
    Forward, Group, Keyword, MatchFirst, ParseBaseException, Regex, StringEnd,
    Suppress, ZeroOrMore, infix_notation, OpAssoc, cpp_style_comment
)

from error_handling import VSLTermError


TERM_TYPES = ('Integer', 'Bit')
TERM_KEYWORDS = ["if", "then", "else", "True", "False"]

ARITHMETIC_OPS = ('+', '-', '*', '/', '%')
ORDER_OPS = ('<', '<=', '>', '>=')
EQUALITY_OPS = ('==', '!=')
LOGICAL_OPS = ('&&', '||', '==>')

PRECEDENCE = {
    '==>': 1, '||': 2, '&&': 3,
    '==': 4, '!=': 4, '<': 4, '<=': 4, '>': 4, '>=': 4,
    '+': 5, '-': 5, '*': 6, '/': 6, '%': 6,
}

UNICODE_OPS = {'&&': '∧', '||': '∨', '==>': '⟹', '!=': '≠', '<=': '≤', '>=': '≥', '!': '¬'}


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_const(value: Any, term_type: str) -> Dict:
    return {'kind': 'const', 'value': value, 'type': term_type}


def make_var(name: str, term_type: str) -> Dict:
    """Free symbolic variable"""
    return {'kind': 'var', 'name': name, 'type': term_type}


def make_unop(op: str, arg: Dict, term_type: str) -> Dict:
    return {'kind': 'unop', 'op': op, 'arg': arg, 'type': term_type}


def make_binop(op: str, left: Dict, right: Dict, term_type: str) -> Dict:
    return {'kind': 'binop', 'op': op, 'left': left, 'right': right, 'type': term_type}


def make_ite(cond: Dict, then_term: Dict, else_term: Dict) -> Dict:
    return {'kind': 'ite', 'cond': cond, 'then': then_term, 'else': else_term, 'type': then_term['type']}


# ============================================================================
# GRAMMAR
# ============================================================================

class TermGrammar:
    """Grammar of inline terms and term declarations"""

    def __init__(self):
        self._setup_grammar()

    def _setup_grammar(self):
        term = Forward()

        any_keyword = MatchFirst([Keyword(k) for k in TERM_KEYWORDS])
        integer = Regex(r"0[xX][0-9a-fA-F]+|0[bB][01]+|\d+").set_parse_action(
            lambda t: {'kind': 'int', 'value': int(t[0], 0) if t[0][:2].lower() in ('0x', '0b') else int(t[0])})
        boolean = (Keyword("True") | Keyword("False")).set_parse_action(
            lambda t: {'kind': 'bool', 'value': t[0] == "True"})
        name = (~any_keyword + Regex(r"[A-Za-z_][A-Za-z0-9_']*(?:::[A-Za-z_][A-Za-z0-9_']*)?"))
        name_ref = name.copy().set_parse_action(lambda t: {'kind': 'name', 'name': t[0]})

        ite = (
            Suppress(Keyword("if")) + term + Suppress(Keyword("then")) + term +
            Suppress(Keyword("else")) + term
        ).set_parse_action(lambda t: {'kind': 'if', 'cond': t[0], 'then': t[1], 'else': t[2]})

        atom = integer | boolean | ite | name_ref | (Suppress("(") + term + Suppress(")"))

        term <<= infix_notation(atom, [
            (Regex(r"!(?!=)|-"), 1, OpAssoc.RIGHT, _make_unary),
            (Regex(r"[*/%]"), 2, OpAssoc.LEFT, _make_left),
            (Regex(r"[+-]"), 2, OpAssoc.LEFT, _make_left),
            (Regex(r"==(?!>)|!=|<=|>=|<|>"), 2, OpAssoc.LEFT, _make_left),
            (Regex(r"&&"), 2, OpAssoc.LEFT, _make_left),
            (Regex(r"\|\|"), 2, OpAssoc.LEFT, _make_left),
            (Regex(r"==>"), 2, OpAssoc.RIGHT, _make_right),
        ])

        decl = Group(name + Suppress("=") + term + Suppress(";"))
        decls = ZeroOrMore(decl) + StringEnd()
        full_term = term + StringEnd()

        for element in (full_term, decls):
            element.ignore(cpp_style_comment)

        self.term = full_term
        self.decls = decls


def _make_unary(t):
    op, arg = t[0]
    return {'kind': 'unop', 'op': op, 'arg': arg}


def _make_left(t):
    items = t[0]
    result = items[0]
    for i in range(1, len(items), 2):
        result = {'kind': 'binop', 'op': items[i], 'left': result, 'right': items[i + 1]}
    return result


def _make_right(t):
    items = t[0]
    result = items[-1]
    for i in range(len(items) - 2, 0, -2):
        result = {'kind': 'binop', 'op': items[i], 'left': items[i - 1], 'right': result}
    return result


_grammar: Optional[TermGrammar] = None


def _get_grammar() -> TermGrammar:
    global _grammar
    if _grammar is None:
        _grammar = TermGrammar()
    return _grammar


# ============================================================================
# ELABORATION
# ============================================================================

def _type_error(message: str, span: Optional[Any]) -> VSLTermError:
    return VSLTermError(f"term type error: {message}", span)


def elaborate(raw: Dict, term_env: Dict[str, Dict], span: Optional[Any] = None) -> Dict:
    """Resolve names against the term environment and type-check"""
    kind = raw['kind']
    if kind == 'int':
        return make_const(raw['value'], 'Integer')
    if kind == 'bool':
        return make_const(raw['value'], 'Bit')
    if kind == 'name':
        if raw['name'] not in term_env:
            raise VSLTermError(f"unbound name in term: {raw['name']}", span)
        return term_env[raw['name']]
    if kind == 'if':
        cond = elaborate(raw['cond'], term_env, span)
        then_term = elaborate(raw['then'], term_env, span)
        else_term = elaborate(raw['else'], term_env, span)
        if cond['type'] != 'Bit':
            raise _type_error(f"if condition must be Bit, got {cond['type']}", span)
        if then_term['type'] != else_term['type']:
            raise _type_error(f"if branches differ: {then_term['type']} and {else_term['type']}", span)
        return make_ite(cond, then_term, else_term)
    if kind == 'unop':
        arg = elaborate(raw['arg'], term_env, span)
        expected = 'Bit' if raw['op'] == '!' else 'Integer'
        if arg['type'] != expected:
            raise _type_error(f"operator {raw['op']} expects {expected}, got {arg['type']}", span)
        return make_unop(raw['op'], arg, expected)

    op = raw['op']
    left = elaborate(raw['left'], term_env, span)
    right = elaborate(raw['right'], term_env, span)
    if op in EQUALITY_OPS:
        if left['type'] != right['type']:
            raise _type_error(f"operator {op} compares {left['type']} with {right['type']}", span)
        return make_binop(op, left, right, 'Bit')
    operand = 'Bit' if op in LOGICAL_OPS else 'Integer'
    if left['type'] != operand or right['type'] != operand:
        raise _type_error(f"operator {op} expects {operand} operands, got {left['type']} and {right['type']}", span)
    result = 'Integer' if op in ARITHMETIC_OPS else 'Bit'
    return make_binop(op, left, right, result)


def _fragment_error(e: ParseBaseException, span: Optional[Any]) -> VSLTermError:
    return VSLTermError(f"term syntax error: {e.msg} (line {e.lineno}, column {e.column} of the term)", span)


def parse_term(text: str, term_env: Dict[str, Dict], span: Optional[Any] = None) -> Dict:
    """Parse and elaborate an inline term

    Args:
        text: Source between the {{ }} delimiters
        term_env: Names visible to the term
        span: Position of the literal, used in error messages

    Returns:
        Typed term
    """
    try:
        raw = _get_grammar().term.parse_string(text, parse_all=True)[0]
    except ParseBaseException as e:
        raise _fragment_error(e, span) from e
    return elaborate(raw, term_env, span)


def parse_term_type(text: str, span: Optional[Any] = None) -> str:
    """Parse the contents of a {| |} type literal"""
    name = text.strip()
    if name not in TERM_TYPES:
        raise VSLTermError(f"unknown term type: {name}", span)
    return name


def parse_decls(text: str, term_env: Dict[str, Dict], span: Optional[Any] = None,
                qualifier: Optional[str] = None) -> Dict[str, Dict]:
    """Elaborate `name = term;` declarations, returning the extended environment

    Each declaration sees the ones before it. With a qualifier the new names
    are added as `Q::name`.
    """
    try:
        parsed = _get_grammar().decls.parse_string(text, parse_all=True)
    except ParseBaseException as e:
        raise _fragment_error(e, span) from e

    scope = dict(term_env)
    result = dict(term_env)
    for name, raw in parsed:
        term = elaborate(raw, scope, span)
        scope[name] = term
        result[f"{qualifier}::{name}" if qualifier else name] = term
    return result


# ============================================================================
# EVALUATION AND ANALYSIS
# ============================================================================

def _apply_binop(op: str, a: Any, b: Any) -> Any:
    if op == '+':
        return a + b
    if op == '-':
        return a - b
    if op == '*':
        return a * b
    if op in ('/', '%'):
        if b == 0:
            raise VSLTermError("division by zero in term")
        return a // b if op == '/' else a % b
    if op == '==':
        return a == b
    if op == '!=':
        return a != b
    if op == '<':
        return a < b
    if op == '<=':
        return a <= b
    if op == '>':
        return a > b
    if op == '>=':
        return a >= b
    if op == '&&':
        return a and b
    if op == '||':
        return a or b
    return (not a) or b


def evaluate_term(term: Dict, assignment: Optional[Dict[str, Any]] = None) -> Any:
    """Evaluate a term to a Python int or bool under a variable assignment"""
    assignment = assignment or {}
    kind = term['kind']
    if kind == 'const':
        return term['value']
    if kind == 'var':
        if term['name'] not in assignment:
            raise VSLTermError(f"no value for symbolic variable {term['name']}")
        return assignment[term['name']]
    if kind == 'unop':
        arg = evaluate_term(term['arg'], assignment)
        return (not arg) if term['op'] == '!' else -arg
    if kind == 'ite':
        if evaluate_term(term['cond'], assignment):
            return evaluate_term(term['then'], assignment)
        return evaluate_term(term['else'], assignment)
    return _apply_binop(term['op'], evaluate_term(term['left'], assignment),
                        evaluate_term(term['right'], assignment))


def term_vars(term: Dict) -> List[Tuple[str, str]]:
    """Free symbolic variables with their types, in order of occurrence"""
    found: List[Tuple[str, str]] = []

    def walk(t: Dict) -> None:
        kind = t['kind']
        if kind == 'var':
            if (t['name'], t['type']) not in found:
                found.append((t['name'], t['type']))
        elif kind == 'unop':
            walk(t['arg'])
        elif kind == 'binop':
            walk(t['left'])
            walk(t['right'])
        elif kind == 'ite':
            walk(t['cond'])
            walk(t['then'])
            walk(t['else'])

    walk(term)
    return found


def term_size(term: Dict) -> int:
    kind = term['kind']
    if kind in ('const', 'var'):
        return 1
    if kind == 'unop':
        return 1 + term_size(term['arg'])
    if kind == 'binop':
        return 1 + term_size(term['left']) + term_size(term['right'])
    return 1 + term_size(term['cond']) + term_size(term['then']) + term_size(term['else'])


def _is_const(term: Dict, value: Any = None) -> bool:
    if term['kind'] != 'const':
        return False
    return value is None or (term['value'] is value if isinstance(value, bool) else term['value'] == value)


def simplify(term: Dict) -> Dict:
    """Constant folding plus the boolean unit and zero laws"""
    kind = term['kind']
    if kind in ('const', 'var'):
        return term
    if kind == 'unop':
        arg = simplify(term['arg'])
        if _is_const(arg):
            return make_const(evaluate_term(make_unop(term['op'], arg, term['type'])), term['type'])
        return make_unop(term['op'], arg, term['type'])
    if kind == 'ite':
        cond = simplify(term['cond'])
        then_term = simplify(term['then'])
        else_term = simplify(term['else'])
        if _is_const(cond):
            return then_term if cond['value'] else else_term
        return make_ite(cond, then_term, else_term)

    op = term['op']
    left = simplify(term['left'])
    right = simplify(term['right'])
    if _is_const(left) and _is_const(right) and not (op in ('/', '%') and right['value'] == 0):
        return make_const(_apply_binop(op, left['value'], right['value']), term['type'])
    if op == '&&':
        if _is_const(left, True):
            return right
        if _is_const(right, True):
            return left
        if _is_const(left, False) or _is_const(right, False):
            return make_const(False, 'Bit')
    elif op == '||':
        if _is_const(left, False):
            return right
        if _is_const(right, False):
            return left
        if _is_const(left, True) or _is_const(right, True):
            return make_const(True, 'Bit')
    elif op == '==>':
        if _is_const(left, True):
            return right
        if _is_const(left, False) or _is_const(right, True):
            return make_const(True, 'Bit')
    return make_binop(op, left, right, term['type'])


# ============================================================================
# PRETTY PRINTING
# ============================================================================

def _prec(term: Dict) -> int:
    kind = term['kind']
    if kind == 'binop':
        return PRECEDENCE[term['op']]
    if kind == 'unop':
        return 7
    if kind == 'ite':
        return 0
    return 8


def pretty_term(term: Dict, pp_opts: Optional[Dict] = None) -> str:
    """Render a term using the session's pretty-printing options"""
    pp_opts = pp_opts or {}
    ascii_only = pp_opts.get('ascii', False)
    color = pp_opts.get('color', False)

    def op_text(op: str) -> str:
        return op if ascii_only else UNICODE_OPS.get(op, op)

    def wrap(t: Dict, min_prec: int) -> str:
        text = render(t)
        return f"({text})" if _prec(t) < min_prec else text

    def render(t: Dict) -> str:
        kind = t['kind']
        if kind == 'const':
            if t['type'] == 'Bit':
                return "True" if t['value'] else "False"
            return str(t['value'])
        if kind == 'var':
            return f"\033[34m{t['name']}\033[0m" if color else t['name']
        if kind == 'unop':
            return f"{op_text(t['op'])}{wrap(t['arg'], 7)}"
        if kind == 'ite':
            return f"if {render(t['cond'])} then {render(t['then'])} else {render(t['else'])}"
        p = PRECEDENCE[t['op']]
        if t['op'] == '==>':
            left, right = wrap(t['left'], p + 1), wrap(t['right'], p)
        else:
            left, right = wrap(t['left'], p), wrap(t['right'], p + 1)
        return f"{left} {op_text(t['op'])} {right}"

    return render(term)


# ============================================================================
# COQ EXPORT
# ============================================================================

COQ_PREAMBLE = """From Coq Require Import ZArith.
From Coq Require Import Bool.
Open Scope Z_scope.
"""

COQ_FUNCTIONS = {
    '/': 'Z.div', '%': 'Z.modulo',
    '<': 'Z.ltb', '<=': 'Z.leb', '>': 'Z.gtb', '>=': 'Z.geb',
    '&&': 'andb', '||': 'orb', '==>': 'implb',
}


def coq_type(term_type: str) -> str:
    return 'Z' if term_type == 'Integer' else 'bool'


def coq_expr(term: Dict) -> str:
    """Translate a term to a Gallina expression"""
    kind = term['kind']
    if kind == 'const':
        if term['type'] == 'Bit':
            return "true" if term['value'] else "false"
        return str(term['value']) if term['value'] >= 0 else f"({term['value']})"
    if kind == 'var':
        return term['name'].replace('::', '_')
    if kind == 'unop':
        arg = coq_expr(term['arg'])
        return f"(negb {arg})" if term['op'] == '!' else f"(- {arg})"
    if kind == 'ite':
        return f"(if {coq_expr(term['cond'])} then {coq_expr(term['then'])} else {coq_expr(term['else'])})"

    op = term['op']
    left, right = coq_expr(term['left']), coq_expr(term['right'])
    if op in ('+', '-', '*'):
        return f"({left} {op} {right})"
    if op in EQUALITY_OPS:
        eqb = 'Z.eqb' if term['left']['type'] == 'Integer' else 'Bool.eqb'
        test = f"({eqb} {left} {right})"
        return test if op == '==' else f"(negb {test})"
    return f"({COQ_FUNCTIONS[op]} {left} {right})"


def translate_coq(name: str, term: Dict) -> str:
    """Coq definition of a term, abstracted over its symbolic variables"""
    params = " ".join(f"({var.replace('::', '_')} : {coq_type(t)})" for var, t in term_vars(term))
    header = f"Definition {name}" + (f" {params}" if params else "") + f" : {coq_type(term['type'])} :="
    return f"{header}\n  {coq_expr(term)}.\n"
