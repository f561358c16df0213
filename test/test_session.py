"""
Environment model tests for VSL
LocalEnv, session merging, pattern binding and leveled output
"""

import pytest
from error_handling import VSLRuntimeError
from parsing import make_ast_node
from semantics import make_schema, t_int, t_string, t_tuple
from session import (
  ERROR, INFO, SILENT, WARN, bind_pattern_env, bind_pattern_local, extend_env, extend_local,
  get_session, lookup_local, make_local_let, make_local_typedef, make_options, make_run_context,
  make_session, merge_local, print_out, print_out_top, put_session, sub_context
)
from terms import make_var
from values import make_bool, make_int, make_string, make_term, make_tuple, make_unit


def pvar(name):
  return make_ast_node("PATTERN_VAR", name)


def ptuple(*elements):
  return make_ast_node("PATTERN_TUPLE", None, list(elements))


WILDCARD = make_ast_node("PATTERN_WILDCARD", "_")


class TestLocalEnv:
  """Test lexical environments"""

  def test_most_recent_binding_wins(self):
    env = extend_local([], make_local_let('x', None, None, make_int(1)))
    env = extend_local(env, make_local_let('x', None, None, make_int(2)))
    assert lookup_local(env, 'x')['value'] == make_int(2)
    assert len(env) == 2

  def test_extension_leaves_outer_env_unchanged(self):
    outer = extend_local([], make_local_let('x', None, None, make_int(1)))
    extend_local(outer, make_local_let('x', None, None, make_int(2)))
    assert lookup_local(outer, 'x')['value'] == make_int(1)

  def test_typedefs_are_not_values(self):
    env = extend_local([], make_local_typedef('x', t_int()))
    assert lookup_local(env, 'x') is None


class TestSession:
  """Test the session record and merging"""

  def test_extend_env_records_schema(self):
    session = extend_env(make_session(), 'x', make_schema([], t_int()), None, make_int(3))
    assert session['values']['x'] == make_int(3)
    assert session['types']['x']['type'] == t_int()

  def test_terms_become_visible_to_inline_terms(self):
    term = make_var('t', 'Integer')
    session = extend_env(make_session(), 'x', None, None, make_term(term))
    assert session['term_env']['x'] == term

  def test_merge_local_prefers_recent_bindings(self):
    session = extend_env(make_session(), 'x', None, None, make_int(0))
    env = extend_local([], make_local_let('x', None, None, make_int(1)))
    env = extend_local(env, make_local_let('x', None, None, make_int(2)))
    env = extend_local(env, make_local_typedef('Count', t_int()))
    merged = merge_local(env, session)
    assert merged['values']['x'] == make_int(2)
    assert merged['typedefs']['Count'] == t_int()
    # The session itself is untouched
    assert session['values']['x'] == make_int(0)
    assert 'Count' not in session['typedefs']

  def test_default_lifecycle(self):
    assert make_session()['prims_avail'] == frozenset(['Current'])


class TestPatternBinding:
  """Test destructuring binds"""

  def test_tuple_pattern_binds_elements(self):
    value = make_tuple([make_bool(True), make_string("x")])
    env = bind_pattern_local(ptuple(pvar('a'), pvar('b')), None, value, [])
    assert lookup_local(env, 'a')['value'] == make_bool(True)
    assert lookup_local(env, 'b')['value'] == make_string("x")

  def test_tuple_arity_must_match(self):
    value = make_tuple([make_int(1), make_int(2), make_int(3)])
    with pytest.raises(VSLRuntimeError, match="expected a tuple of size 2, got a tuple of size 3"):
      bind_pattern_local(ptuple(pvar('a'), pvar('b')), None, value, [])

  def test_tuple_pattern_against_non_tuple(self):
    with pytest.raises(VSLRuntimeError, match="got a value of type Int"):
      bind_pattern_env(ptuple(pvar('a'), pvar('b')), None, make_int(1), make_session())

  def test_empty_tuple_pattern_matches_unit(self):
    assert bind_pattern_local(ptuple(), None, make_unit(), []) == []

  def test_wildcard_binds_nothing(self):
    session = make_session()
    assert bind_pattern_env(WILDCARD, None, make_int(1), session) is session

  def test_schema_is_distributed(self):
    schema = make_schema([], t_tuple([t_int(), t_string()]))
    value = make_tuple([make_int(1), make_string("s")])
    session = bind_pattern_env(ptuple(pvar('n'), pvar('s')), schema, value, make_session())
    assert session['types']['n']['type'] == t_int()
    assert session['types']['s']['type'] == t_string()

  def test_nested_patterns(self):
    value = make_tuple([make_int(1), make_tuple([make_int(2), make_int(3)])])
    pattern = ptuple(pvar('a'), ptuple(WILDCARD, make_ast_node("PATTERN_LOCATED", None, [pvar('c')])))
    env = bind_pattern_local(pattern, None, value, [])
    assert [b['name'] for b in env] == ['c', 'a']


class TestRunContext:
  """Test the run context and output levels"""

  def test_put_session_is_shared_with_sub_contexts(self):
    rc = make_run_context(make_session(), make_options(), {})
    proof_rc = sub_context(rc, 'ProofScript', {'goal': None})
    put_session(proof_rc, extend_env(get_session(proof_rc), 'x', None, None, make_int(1)))
    assert get_session(rc)['values']['x'] == make_int(1)
    assert proof_rc['kind'] == 'ProofScript'

  def test_print_out_respects_verbosity(self, capsys):
    options = make_options(verbosity=WARN)
    print_out(options, ERROR, "shown")
    print_out(options, INFO, "hidden")
    assert capsys.readouterr().out == "shown\n"

  def test_silent(self, capsys):
    print_out(make_options(verbosity=SILENT), ERROR, "hidden")
    assert capsys.readouterr().out == ""

  def test_position_prefix(self, capsys):
    rc = {**make_run_context(make_session(), make_options(show_position=True), {}), 'position': "f.vsl:3:1"}
    print_out_top(rc, INFO, "one\ntwo")
    assert capsys.readouterr().out == "[output] at f.vsl:3:1:\n\tone\n\ttwo\n"
