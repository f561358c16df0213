"""
Value domain tests for VSL
Constructors, display and the partial accessors
"""

import pytest
from error_handling import VSLRuntimeError
from values import (
  index_value, lookup_value, make_action, make_array, make_bool, make_builtin, make_int,
  make_pp_opts, make_proof_result, make_record, make_spec, make_string, make_tuple,
  make_unit, show_value, tuple_lookup_value, values_equal, with_trace
)


class TestConstructors:
  """Test value constructors"""

  def test_empty_tuple_is_unit(self):
    assert make_tuple([]) == make_unit()

  def test_with_trace_only_marks_functions(self):
    fn = make_builtin("f", 1, lambda x: x)
    assert with_trace(fn, "g")['trace'] == "g"
    assert 'trace' not in with_trace(make_int(1), "x")


class TestShow:
  """Test value rendering"""

  @pytest.fixture
  def pp(self):
    return make_pp_opts()

  def test_scalars(self, pp):
    assert show_value(pp, make_unit()) == "()"
    assert show_value(pp, make_bool(True)) == "true"
    assert show_value(pp, make_int(-3)) == "-3"
    assert show_value(pp, make_string('a"b')) == '"a\\"b"'

  def test_aggregates(self, pp):
    value = make_tuple([make_array([make_int(1), make_int(2)]), make_record({'b': make_int(2), 'a': make_int(1)})])
    assert show_value(pp, value) == "([1, 2], {a = 1, b = 2})"

  def test_functions_and_actions(self, pp):
    assert show_value(pp, make_builtin("f", 1, lambda x: x)) == "<<function>>"
    assert show_value(pp, make_action('TopLevel', lambda rc: make_unit())) == "<<TopLevel action>>"
    assert show_value(pp, make_action(None, lambda rc: make_unit())) == "<<monadic action>>"

  def test_integer_base(self):
    assert show_value(make_pp_opts(base=16), make_int(255)) == "0xff"
    assert show_value(make_pp_opts(base=2), make_int(-5)) == "-0b101"

  def test_proof_results(self, pp):
    assert show_value(pp, make_proof_result(True)) == "Valid"
    assert show_value(pp, make_proof_result(False, [('x', 0), ('b', True)])) == "Invalid: [x = 0, b = True]"

  def test_spec(self, pp):
    assert show_value(pp, make_spec("inc", [], [], [], 'verified')) == "<<spec inc (verified)>>"


class TestAccessors:
  """Test indexing, lookup and equality"""

  def test_index(self):
    arr = make_array([make_int(10), make_int(20)])
    assert index_value(arr, make_int(1)) == make_int(20)
    with pytest.raises(VSLRuntimeError, match="out of bounds"):
      index_value(arr, make_int(2))
    with pytest.raises(VSLRuntimeError, match="expected an array"):
      index_value(make_int(1), make_int(0))

  def test_lookup(self):
    rec = make_record({'a': make_int(1)})
    assert lookup_value(rec, 'a') == make_int(1)
    with pytest.raises(VSLRuntimeError, match="no field b"):
      lookup_value(rec, 'b')

  def test_tuple_lookup(self):
    tup = make_tuple([make_int(1), make_bool(False)])
    assert tuple_lookup_value(tup, 1) == make_bool(False)
    with pytest.raises(VSLRuntimeError, match="out of range"):
      tuple_lookup_value(tup, 2)

  def test_structural_equality(self):
    a = make_tuple([make_int(1), make_array([make_string("x")])])
    b = make_tuple([make_int(1), make_array([make_string("x")])])
    assert values_equal(a, b)
    assert not values_equal(make_int(1), make_string("1"))

  def test_functions_are_not_comparable(self):
    fn = make_builtin("f", 1, lambda x: x)
    with pytest.raises(VSLRuntimeError, match="cannot compare"):
      values_equal(fn, fn)
