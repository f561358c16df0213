"""
Error taxonomy for the VSL interpreter with detailed parse error messages
Parse errors carry source context and suggestions, the rest are thin exception classes
"""

from typing import List, Optional, Any
from pyparsing import ParseBaseException
import re


# ============================================================================
# PARSE ERROR CONTEXT
# ============================================================================

def get_context_lines(source_text: str, line_num: int, col_num: int, context_lines: int = 2) -> str:
    """Get context lines around the error"""
    lines = source_text.split('\n')
    start_line = max(0, line_num - context_lines - 1)
    end_line = min(len(lines), line_num + context_lines)

    context_parts = []
    for i in range(start_line, end_line):
        line_prefix = f"{i+1:4d}: "
        context_parts.append(f"{line_prefix}{lines[i]}")
        if i == line_num - 1:
            context_parts.append(f"{'':6}{' ' * (col_num - 1)}^ Error here")

    return '\n'.join(context_parts)


def extract_expected(exc: ParseBaseException) -> List[str]:
    """Extract expected tokens from exception"""
    expected = []

    msg = str(exc)
    if "Expected" in msg:
        expected_match = re.search(r"Expected\s+(.+?)(?:,\s+found|\s+\(|$)", msg)
        if expected_match:
            expected.append(expected_match.group(1))

    return expected if expected else ["valid syntax"]


def extract_got(source_text: str, line_num: int, col_num: int) -> str:
    """Extract what was actually found at the error location"""
    lines = source_text.split('\n')

    if line_num <= len(lines):
        error_line = lines[line_num - 1]
        if col_num <= len(error_line):
            start = max(0, col_num - 1)
            end = min(len(error_line), col_num + 10)
            got_text = error_line[start:end].strip()
            if got_text:
                return f"'{got_text}'"
        return "end of line"
    return "end of input"


def generate_suggestions(got: str, expected: List[str], source_text: str) -> List[str]:
    """Generate helpful suggestions based on the error"""
    suggestions = []
    expected_text = ' '.join(expected)

    if "';'" in expected_text or got in ("end of line", "end of input"):
        suggestions.append("Every statement must be terminated by ';'")

    if "=" in got and "<-" not in got and "let" not in source_text:
        suggestions.append("Bind names with 'let x = e;' or run actions with 'x <- e;'")

    if source_text.count('{{') != source_text.count('}}'):
        suggestions.append("Inline terms must be closed with '}}'")

    if source_text.count('(') != source_text.count(')'):
        suggestions.append("Check for unbalanced parentheses")

    if got.startswith("'do") or "'}'" in expected_text:
        suggestions.append("Statements inside 'do { ... }' also need a trailing ';'")

    return suggestions


# ============================================================================
# EXCEPTION CLASSES
# ============================================================================

class VSLError(Exception):
    """Base class for every error reported by the interpreter"""

    def __init__(self, message: str, span: Optional[Any] = None):
        self.message = message
        self.span = span
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        if self.span:
            return f"{self.span}: {self.message}"
        return self.message


class VSLParseError(VSLError):
    """Parse error with source context and suggestions"""

    def __init__(self, message: str, location: int = 0, line: int = 0, column: int = 0,
                 filename: str = "<input>", expected: Optional[List[str]] = None,
                 got: Optional[str] = None, context: Optional[str] = None,
                 suggestions: Optional[List[str]] = None):
        self.location = location
        self.line = line
        self.column = column
        self.filename = filename
        self.expected = expected or []
        self.got = got
        self.context = context
        self.suggestions = suggestions or []
        super().__init__(message)

    def __str__(self) -> str:
        if not self.line:
            return f"Parse error: {self.message}"
        lines = [f"Parse error at {self.filename}:{self.line}:{self.column}:", f"  {self.message}"]
        if self.expected:
            lines.append(f"  Expected: {', '.join(self.expected)}")
        if self.got:
            lines.append(f"  Got: {self.got}")
        if self.context:
            lines.append(f"  Context:\n{self.context}")
        if self.suggestions:
            lines.append("  Suggestions:")
            lines.extend(f"    - {s}" for s in self.suggestions)
        return "\n".join(lines) + "\n"


class VSLTypeError(VSLError):
    """Raised when a statement fails the upstream schema check"""

    def _format_error(self) -> str:
        if self.span:
            return f"Type error at {self.span}: {self.message}"
        return f"Type error: {self.message}"


class VSLRuntimeError(VSLError):
    """Runtime failure: unresolved names, shape mismatches, unsupported constructs"""

    def __init__(self, message: str, span: Optional[Any] = None):
        self.trace: List[str] = []
        super().__init__(message, span)

    def add_trace(self, name: str) -> None:
        """Record a traced function name the error propagated through"""
        self.trace.append(name)

    def __str__(self) -> str:
        text = self._format_error()
        for name in self.trace:
            text += f"\n  in {name}"
        return text


class VSLTermError(VSLError):
    """Error in an inline term fragment or term declaration"""
    pass


def parse_error_from_exception(exc: ParseBaseException, source_text: str, filename: str = "<input>") -> VSLParseError:
    """Convert a pyparsing exception to a VSLParseError with source context"""
    expected = extract_expected(exc)
    got = extract_got(source_text, exc.lineno, exc.column)
    return VSLParseError(
        message=exc.msg,
        location=exc.loc,
        line=exc.lineno,
        column=exc.column,
        filename=filename,
        expected=expected,
        got=got,
        context=get_context_lines(source_text, exc.lineno, exc.column),
        suggestions=generate_suggestions(got, expected, source_text)
    )
