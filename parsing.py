"""
VSL Programming Language Parser
pyparsing grammar producing dictionary AST nodes with source spans
"""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass
import re
from functools import reduce

from pyparsing import (
    Forward, Keyword, Literal, MatchFirst, Opt, Group, OneOrMore, ZeroOrMore,
    ParseBaseException, ParserElement, QuotedString, Regex, StringEnd, Suppress,
    DelimitedList, infix_notation, OpAssoc, cpp_style_comment, lineno, col
)

from error_handling import VSLParseError, parse_error_from_exception
from semantics import (
    make_type_info, make_type_var, make_record_type, make_schema,
    t_block, t_context, t_fun, t_list, t_tuple, t_unit, type_var_names, CONTEXTS
)

# Enable packrat parsing for performance
ParserElement.enable_packrat()


KEYWORDS = ["let", "rec", "and", "in", "if", "then", "else", "do", "typedef", "import", "as"]

# Infix operators desugar to applications of these primitives
BINARY_PRIMITIVES = {
    '*': 'int_mul',
    '/': 'int_div',
    '%': 'int_mod',
    '+': 'int_add',
    '-': 'int_sub',
    '==': 'eq',
    '!=': 'neq',
    '<': 'int_lt',
    '<=': 'int_le',
    '>': 'int_gt',
    '>=': 'int_ge',
}


@dataclass(frozen=True)
class SourceSpan:
    """Source location of a node"""
    filename: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    text: str = ""

    def __str__(self) -> str:
        if self.start_line == self.end_line and self.start_col == self.end_col:
            return f"{self.filename}:{self.start_line}:{self.start_col}"
        if self.start_line == self.end_line:
            return f"{self.filename}:{self.start_line}:{self.start_col}-{self.end_col}"
        return f"{self.filename}:{self.start_line}:{self.start_col}-{self.end_line}:{self.end_col}"


def make_ast_node(node_type: str, value: Any, children: Optional[List[Dict]] = None,
                  span: Optional[SourceSpan] = None, type_info: Optional[Dict] = None) -> Dict:
    """Create an immutable AST node dictionary"""
    return {
        'type': node_type,
        'value': value,
        'children': children or [],
        'span': span,
        'type_info': type_info
    }


def parse_int_literal(text: str) -> int:
    """Decimal, hexadecimal, binary and octal integer literals"""
    if text[:2].lower() in ('0x', '0b', '0o'):
        return int(text, 0)
    return int(text)


class VSLGrammar:
    """VSL grammar definition using pyparsing"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.filename = "<input>"
        self._setup_grammar()

    def _span(self, s: str, loc: int) -> SourceSpan:
        line = lineno(loc, s)
        column = col(loc, s)
        return SourceSpan(self.filename, line, column, line, column)

    def _setup_grammar(self):
        """Setup the statement, expression, pattern and type grammars"""

        expression = Forward()
        statement = Forward()
        type_expr = Forward()
        pattern = Forward()

        # Keywords
        kw = {name: Keyword(name) for name in KEYWORDS}
        any_keyword = MatchFirst([Keyword(name) for name in KEYWORDS])

        LPAR, RPAR = Suppress("("), Suppress(")")
        LBRACK, RBRACK = Suppress("["), Suppress("]")
        LBRACE, RBRACE = Suppress("{"), Suppress("}")
        COLON, EQUALS = Suppress(":"), Suppress("=")
        SEMI = Suppress(";")
        ARROW = Suppress("->")
        BIND_ARROW = Suppress("<-")

        identifier = ~any_keyword + Regex(r"[A-Za-z][A-Za-z0-9_']*|_[A-Za-z0-9_']+")
        wildcard = Regex(r"_(?![A-Za-z0-9_'])")

        # ====================================================================
        # TYPES
        # ====================================================================

        type_con_name = Regex(r"[A-Z][A-Za-z0-9_]*")
        type_var_name = ~any_keyword + Regex(r"[a-z][A-Za-z0-9_]*")

        type_unit = (LPAR + RPAR).set_parse_action(lambda t: t_unit())
        type_paren = (LPAR + DelimitedList(type_expr) + RPAR).set_parse_action(
            lambda t: t[0] if len(t) == 1 else t_tuple(list(t)))
        type_list = (LBRACK + type_expr + RBRACK).set_parse_action(lambda t: t_list(t[0]))
        type_field = Group(identifier + COLON + type_expr)
        type_record = (LBRACE + Opt(DelimitedList(type_field)) + RBRACE).set_parse_action(
            lambda t: make_record_type({f[0]: f[1] for f in t}))
        type_con = type_con_name.copy().set_parse_action(lambda t: make_type_info(t[0]))
        type_var = type_var_name.copy().set_parse_action(lambda t: make_type_var(t[0]))
        type_atom = type_unit | type_paren | type_list | type_record | type_con | type_var

        context_head = (
            MatchFirst([Keyword(c) for c in CONTEXTS]).set_parse_action(lambda t: t_context(t[0])) |
            type_var_name.copy().set_parse_action(lambda t: make_type_var(t[0]))
        )
        type_app = (context_head + type_atom).set_parse_action(lambda t: t_block(t[0], t[1])) | type_atom

        def make_function_type(t):
            return reduce(lambda result, arg: t_fun(arg, result), reversed(t[:-1]), t[-1])

        type_expr <<= (type_app + ZeroOrMore(ARROW + type_app)).set_parse_action(make_function_type)

        def make_schema_from_tokens(t):
            body = t[-1]
            if len(t) == 2:
                return make_schema(list(t[0]), body)
            return make_schema(type_var_names(body), body)

        schema_vars = Group(LBRACE + DelimitedList(type_var_name) + RBRACE)
        schema = (Opt(schema_vars) + type_expr).set_parse_action(make_schema_from_tokens)

        # ====================================================================
        # LITERALS
        # ====================================================================

        int_literal = Regex(r"0[xX][0-9a-fA-F]+|0[bB][01]+|0[oO][0-7]+|\d+").set_parse_action(
            lambda s, l, t: make_ast_node("INT", parse_int_literal(t[0]), span=self._span(s, l)))
        string_literal = QuotedString('"', esc_char='\\').set_parse_action(
            lambda s, l, t: make_ast_node("STRING", t[0], span=self._span(s, l)))
        code_text = Regex(r"\{\{(.*?)\}\}", flags=re.DOTALL)
        code_literal = code_text.copy().set_parse_action(
            lambda s, l, t: make_ast_node("CODE", t[0][2:-2], span=self._span(s, l)))
        ctype_literal = Regex(r"\{\|(.*?)\|\}", flags=re.DOTALL).set_parse_action(
            lambda s, l, t: make_ast_node("CTYPE", t[0][2:-2], span=self._span(s, l)))

        # ====================================================================
        # PATTERNS
        # ====================================================================

        pattern_wildcard = wildcard.copy().set_parse_action(
            lambda s, l, t: make_ast_node("PATTERN_WILDCARD", "_", span=self._span(s, l)))
        pattern_var = identifier.copy().set_parse_action(
            lambda s, l, t: make_ast_node("PATTERN_VAR", t[0], span=self._span(s, l)))

        def make_typed_pattern(t):
            if len(t) == 2:
                return {**t[0], 'type_info': t[1]}
            return t[0]

        typed_pattern = (pattern + Opt(COLON + type_expr)).set_parse_action(make_typed_pattern)

        def make_tuple_pattern(s, l, t):
            span = self._span(s, l)
            if len(t) == 1:
                return make_ast_node("PATTERN_LOCATED", None, [t[0]], span)
            return make_ast_node("PATTERN_TUPLE", None, list(t), span)

        pattern_tuple = (LPAR + Opt(DelimitedList(typed_pattern)) + RPAR).set_parse_action(make_tuple_pattern)
        pattern <<= pattern_wildcard | pattern_var | pattern_tuple

        # ====================================================================
        # DECLARATIONS
        # ====================================================================

        def make_function_decl(s, l, t):
            span = self._span(s, l)
            name, params = t[0], list(t[1])
            body = t[-1]
            if len(t) == 4:
                body = make_ast_node("TSIG", t[2], [body], body['span'])
            for param in reversed(params):
                body = make_ast_node("FUNCTION", param, [body], span)
            return make_ast_node("DECL", make_ast_node("PATTERN_VAR", name, span=span), [body], span)

        function_decl = (
            identifier + Group(OneOrMore(pattern)) + Opt(COLON + type_expr) + EQUALS + expression
        ).set_parse_action(make_function_decl)

        simple_decl = (typed_pattern + EQUALS + expression).set_parse_action(
            lambda s, l, t: make_ast_node("DECL", t[0], [t[1]], self._span(s, l)))

        decl = function_decl | simple_decl

        rec_group = (Suppress(kw['rec']) + decl + ZeroOrMore(Suppress(kw['and']) + decl)).set_parse_action(
            lambda s, l, t: make_ast_node("DECL_GROUP", "rec", list(t), self._span(s, l)))
        single_group = decl.copy().add_parse_action(
            lambda s, l, t: make_ast_node("DECL_GROUP", "nonrec", [t[0]], self._span(s, l)))
        decl_group = rec_group | single_group

        # ====================================================================
        # EXPRESSIONS
        # ====================================================================

        var_expr = identifier.copy().set_parse_action(
            lambda s, l, t: make_ast_node("VAR", t[0], span=self._span(s, l)))

        unit_expr = (LPAR + RPAR).set_parse_action(
            lambda s, l, t: make_ast_node("TUPLE", None, [], self._span(s, l)))

        def make_paren_expr(s, l, t):
            span = self._span(s, l)
            if len(t) == 1:
                return make_ast_node("LOCATED", None, [t[0]], span)
            return make_ast_node("TUPLE", None, list(t), span)

        paren_expr = (LPAR + DelimitedList(expression) + RPAR).set_parse_action(make_paren_expr)
        array_expr = (LBRACK + Opt(DelimitedList(expression)) + RBRACK).set_parse_action(
            lambda s, l, t: make_ast_node("ARRAY", None, list(t), self._span(s, l)))

        record_field = Group(identifier + EQUALS + expression)
        record_expr = (LBRACE + Opt(DelimitedList(record_field)) + RBRACE).set_parse_action(
            lambda s, l, t: make_ast_node("RECORD", [f[0] for f in t], [f[1] for f in t], self._span(s, l)))

        block_expr = (Suppress(kw['do']) + LBRACE + ZeroOrMore(statement) + RBRACE).set_parse_action(
            lambda s, l, t: make_ast_node("BLOCK", None, list(t), self._span(s, l)))

        atom = (
            code_literal | ctype_literal | int_literal | string_literal |
            unit_expr | paren_expr | array_expr | block_expr | record_expr | var_expr
        )

        field_selector = (Suppress(".") + identifier).set_parse_action(lambda t: ("LOOKUP", t[0]))
        index_selector = (Suppress(".") + Regex(r"\d+")).set_parse_action(lambda t: ("TLOOKUP", int(t[0])))
        array_selector = (Suppress("@") + atom).set_parse_action(lambda t: ("INDEX", t[0]))

        def make_postfix(s, l, t):
            result = t[0]
            for kind, arg in t[1:]:
                span = self._span(s, l)
                if kind == "INDEX":
                    result = make_ast_node("INDEX", None, [result, arg], span)
                else:
                    result = make_ast_node(kind, arg, [result], span)
            return result

        postfix = (atom + ZeroOrMore(index_selector | field_selector | array_selector)).set_parse_action(make_postfix)

        def make_application(s, l, t):
            span = self._span(s, l)
            return reduce(lambda fn, arg: make_ast_node("APPLICATION", None, [fn, arg], span), t[1:], t[0])

        application = OneOrMore(postfix).set_parse_action(make_application)

        def make_binary(s, l, t):
            items = t[0]
            span = self._span(s, l)
            result = items[0]
            for i in range(1, len(items), 2):
                result = self._desugar_binary(items[i], result, items[i + 1], span)
            return result

        operator_expr = infix_notation(application, [
            (Regex(r"[*/%]"), 2, OpAssoc.LEFT, make_binary),
            (Regex(r"\+|-(?!>)"), 2, OpAssoc.LEFT, make_binary),
            (Regex(r"==|!=|<=|>=|<(?![-=])|>"), 2, OpAssoc.LEFT, make_binary),
            (Literal("&&"), 2, OpAssoc.LEFT, make_binary),
            (Literal("||"), 2, OpAssoc.LEFT, make_binary),
        ])

        def make_typed_expr(s, l, t):
            if len(t) == 2:
                return make_ast_node("TSIG", t[1], [t[0]], self._span(s, l))
            return t[0]

        typed_expr = (operator_expr + Opt(COLON + type_expr)).set_parse_action(make_typed_expr)

        let_expr = (Suppress(kw['let']) + decl_group + Suppress(kw['in']) + expression).set_parse_action(
            lambda s, l, t: make_ast_node("LET", t[0], [t[1]], self._span(s, l)))

        def make_lambda(s, l, t):
            span = self._span(s, l)
            return reduce(lambda body, param: make_ast_node("FUNCTION", param, [body], span),
                          reversed(list(t[0])), t[1])

        lambda_expr = (Suppress("\\") + Group(OneOrMore(pattern)) + ARROW + expression).set_parse_action(make_lambda)

        if_expr = (
            Suppress(kw['if']) + expression + Suppress(kw['then']) + expression + Suppress(kw['else']) + expression
        ).set_parse_action(lambda s, l, t: make_ast_node("IF", None, list(t), self._span(s, l)))

        expression <<= let_expr | lambda_expr | if_expr | typed_expr

        # ====================================================================
        # STATEMENTS
        # ====================================================================

        code_stmt = (Suppress(kw['let']) + code_text).set_parse_action(
            lambda s, l, t: make_ast_node("STMT_CODE", t[0][2:-2], span=self._span(s, l)))
        let_stmt = (Suppress(kw['let']) + decl_group + ~kw['in']).set_parse_action(
            lambda s, l, t: make_ast_node("STMT_LET", t[0], span=self._span(s, l)))
        typedef_stmt = (Suppress(kw['typedef']) + type_con_name + EQUALS + type_expr).set_parse_action(
            lambda s, l, t: make_ast_node("STMT_TYPEDEF", {'name': t[0], 'type': t[1]}, span=self._span(s, l)))

        def make_import(s, l, t):
            qualifier = t[2] if len(t) > 2 else None
            return make_ast_node("STMT_IMPORT", {'file': t[0]['value'], 'qualifier': qualifier},
                                 span=self._span(s, l))

        import_stmt = (
            Suppress(kw['import']) + string_literal + Opt(kw['as'] + identifier)
        ).set_parse_action(make_import)

        bind_stmt = (typed_pattern + BIND_ARROW + expression).set_parse_action(
            lambda s, l, t: make_ast_node("STMT_BIND", t[0], [t[1]], self._span(s, l)))
        expr_stmt = expression.copy().add_parse_action(
            lambda s, l, t: make_ast_node(
                "STMT_BIND", make_ast_node("PATTERN_WILDCARD", "_", span=self._span(s, l)),
                [t[0]], self._span(s, l)))

        statement <<= (code_stmt | let_stmt | typedef_stmt | import_stmt | bind_stmt | expr_stmt) + SEMI

        program = ZeroOrMore(statement) + StringEnd()

        for element in (program, statement, expression, schema, type_expr):
            element.ignore(cpp_style_comment)

        # Store the main parsers
        self.program = program
        self.statement = statement
        self.expression = expression
        self.pattern = typed_pattern
        self.decl_group = decl_group
        self.type_expr = type_expr
        self.schema = schema

    def _desugar_binary(self, op: str, left: Dict, right: Dict, span: SourceSpan) -> Dict:
        """Infix operators become primitive applications or conditionals"""
        if op == "&&":
            return make_ast_node("IF", None, [left, right, make_ast_node("BOOL", False, span=span)], span)
        if op == "||":
            return make_ast_node("IF", None, [left, make_ast_node("BOOL", True, span=span), right], span)
        fn = make_ast_node("VAR", BINARY_PRIMITIVES[op], span=span)
        return make_ast_node("APPLICATION", None, [make_ast_node("APPLICATION", None, [fn, left], span), right], span)

    def _run(self, element: ParserElement, text: str, filename: str) -> List[Any]:
        self.filename = filename
        try:
            return list(element.parse_string(text, parse_all=True))
        except ParseBaseException as e:
            raise parse_error_from_exception(e, text, filename) from e

    def parse_program(self, text: str, filename: str = "<input>") -> List[Dict]:
        """Parse a complete VSL program into statement nodes"""
        if not text.strip():
            return []
        return self._run(self.program, text, filename)

    def parse_statement(self, text: str, filename: str = "<input>") -> Dict:
        """Parse a single statement, the trailing ';' is optional"""
        text = text.rstrip()
        if not text.endswith(';'):
            text += ';'
        return self._run(self.statement, text, filename)[0]

    def parse_expression(self, text: str, filename: str = "<input>") -> Dict:
        """Parse a single VSL expression"""
        return self._run(self.expression, text, filename)[0]

    def parse_type(self, text: str, filename: str = "<input>") -> Dict:
        return self._run(self.type_expr, text, filename)[0]

    def parse_schema(self, text: str, filename: str = "<input>") -> Dict:
        return self._run(self.schema, text, filename)[0]


class VSLParser:
    """Main VSL parser with file handling"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.grammar = VSLGrammar(debug)

    def parse_file(self, filepath: str) -> List[Dict]:
        """Parse a VSL source file"""
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise VSLParseError(f"File not found: {filepath}")
        except UnicodeDecodeError as e:
            raise VSLParseError(f"Cannot decode file {filepath}: {e}")
        return self.grammar.parse_program(content, filepath)

    def parse_string(self, text: str, filename: str = "<input>") -> List[Dict]:
        """Parse VSL source code from string"""
        return self.grammar.parse_program(text, filename)

    def parse_statement(self, text: str, filename: str = "<input>") -> Dict:
        return self.grammar.parse_statement(text, filename)

    def parse_expression(self, text: str, filename: str = "<input>") -> Dict:
        """Parse a single VSL expression"""
        return self.grammar.parse_expression(text, filename)


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> VSLParser:
    """Create a VSL parser"""
    return VSLParser(debug=debug)


_schema_grammar: Optional[VSLGrammar] = None


def parse_schema(text: str) -> Dict:
    """Parse a schema such as `{a} [a] -> Int` with a shared grammar"""
    global _schema_grammar
    if _schema_grammar is None:
        _schema_grammar = VSLGrammar()
    return _schema_grammar.parse_schema(text, "<schema>")


# Utility functions for working with the AST
def find_nodes_by_type(node: Any, node_type: str) -> List[Dict]:
    """Find all nodes of a specific type below an AST node"""
    result = []

    def search(item: Any):
        if isinstance(item, dict) and 'type' in item and 'children' in item:
            if item['type'] == node_type:
                result.append(item)
            if isinstance(item['value'], dict):
                search(item['value'])
            for child in item['children']:
                search(child)

    search(node)
    return result


def pretty_print_ast(node: Dict, indent: int = 0) -> str:
    """Pretty print an AST node for debugging"""
    result = "  " * indent + f"{node['type']}"
    value = node['value']
    if value is not None and not (isinstance(value, dict) and 'children' in value):
        result += f"({value!r})"
    if node.get('type_info'):
        result += f" : {node['type_info']}"
    result += "\n"

    if isinstance(value, dict) and 'children' in value:
        result += pretty_print_ast(value, indent + 1)
    for child in node['children']:
        result += pretty_print_ast(child, indent + 1)

    return result
