"""
Inline term language tests
Elaboration, evaluation, simplification, printing and Coq export
"""

import pytest
from error_handling import VSLTermError
from terms import (
  evaluate_term, make_var, parse_decls, parse_term, parse_term_type, pretty_term,
  simplify, term_size, term_vars, translate_coq
)


@pytest.fixture
def env():
  """Term environment with one symbolic Integer and one Bit"""
  return {'x': make_var('x', 'Integer'), 'b': make_var('b', 'Bit')}


class TestElaboration:
  """Test parsing and typing of terms"""

  def test_arithmetic(self, env):
    term = parse_term("x + 1 * 2", env)
    assert term['type'] == 'Integer'
    assert term['op'] == '+'
    assert term['right']['op'] == '*'

  def test_comparison_is_bit(self, env):
    assert parse_term("x < 3", env)['type'] == 'Bit'

  def test_implication_is_right_associative(self, env):
    term = parse_term("b ==> b ==> True", env)
    assert term['op'] == '==>'
    assert term['right']['op'] == '==>'

  def test_if_then_else(self, env):
    term = parse_term("if b then x else 0", env)
    assert term['kind'] == 'ite'
    assert term['type'] == 'Integer'

  def test_unbound_name(self):
    with pytest.raises(VSLTermError, match="unbound name in term: y"):
      parse_term("y + 1", {})

  def test_type_error(self, env):
    with pytest.raises(VSLTermError, match="term type error"):
      parse_term("x && b", env)

  def test_syntax_error(self):
    with pytest.raises(VSLTermError, match="term syntax error"):
      parse_term("1 +", {})

  def test_term_types(self):
    assert parse_term_type(" Integer ") == 'Integer'
    with pytest.raises(VSLTermError, match="unknown term type"):
      parse_term_type("Float")


class TestDeclarations:
  """Test `name = term;` declaration lists"""

  def test_sequential_declarations(self):
    result = parse_decls("k = 3; m = k + 1;", {})
    assert evaluate_term(result['m']) == 4

  def test_qualified_declarations(self):
    result = parse_decls("k = 3; m = k + 1;", {}, qualifier="Q")
    assert set(result) == {'Q::k', 'Q::m'}
    assert evaluate_term(parse_term("Q::m * 2", result)) == 8

  def test_existing_names_are_kept(self, env):
    result = parse_decls("y = x;", env)
    assert set(result) == {'x', 'b', 'y'}


class TestEvaluation:
  """Test concrete evaluation and simplification"""

  def test_evaluate_with_assignment(self, env):
    term = parse_term("if x > 0 then x else -x", env)
    assert evaluate_term(term, {'x': -5}) == 5

  def test_division_rounds_down(self):
    assert evaluate_term(parse_term("-7 / 2", {})) == -4

  def test_division_by_zero(self):
    with pytest.raises(VSLTermError, match="division by zero"):
      evaluate_term(parse_term("1 / 0", {}))

  def test_missing_assignment(self, env):
    with pytest.raises(VSLTermError, match="no value for symbolic variable x"):
      evaluate_term(parse_term("x + 1", env))

  def test_simplify_constants(self):
    assert simplify(parse_term("1 + 2 == 3", {})) == {'kind': 'const', 'value': True, 'type': 'Bit'}

  def test_simplify_boolean_laws(self, env):
    term = simplify(parse_term("True && b", env))
    assert term == env['b']
    assert simplify(parse_term("b ==> True", env))['value'] is True

  def test_simplify_keeps_division_by_zero(self):
    term = simplify(parse_term("1 / 0", {}))
    assert term['kind'] == 'binop'

  def test_vars_and_size(self, env):
    term = parse_term("x + x * 2 > 0 && b", env)
    assert term_vars(term) == [('x', 'Integer'), ('b', 'Bit')]
    assert term_size(term) == 9


class TestPrinting:
  """Test pretty printing and Coq export"""

  def test_unicode_and_ascii(self, env):
    term = parse_term("b && x <= 1", env)
    assert pretty_term(term) == "b ∧ x ≤ 1"
    assert pretty_term(term, {'ascii': True}) == "b && x <= 1"

  def test_parentheses(self, env):
    assert pretty_term(parse_term("(x + 1) * 2", env), {'ascii': True}) == "(x + 1) * 2"
    assert pretty_term(parse_term("x - (1 - 2)", env), {'ascii': True}) == "x - (1 - 2)"

  def test_color(self, env):
    assert pretty_term(env['x'], {'color': True}) == "\033[34mx\033[0m"

  def test_coq_definition(self, env):
    text = translate_coq("inc", parse_term("x + 1 > x", env))
    assert text.startswith("Definition inc (x : Z) : bool :=")
    assert "Z.gtb" in text
