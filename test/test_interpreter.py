"""
Interpreter tests for VSL
Evaluation, declaration groups, statement sequencing and the file driver
"""

import os
import pytest
from error_handling import VSLError, VSLRuntimeError, VSLTypeError
from interpreter import apply_value, process_file, run_action
from session import INFO, get_session, make_options, sub_context
from values import make_action, make_bool, make_int, make_string, make_unit


class TestBindings:
  """Test let statements and binds against the session"""

  def test_let_binds_value(self, quiet_interp):
    quiet_interp.run_statement("let x = 1 + 2;")
    assert quiet_interp.lookup("x") == make_int(3)

  def test_let_changes_only_its_name(self, quiet_interp):
    before = dict(quiet_interp.session()['values'])
    quiet_interp.run_statement("let y = \"s\";")
    after = quiet_interp.session()['values']
    assert set(after) - set(before) == {'y'}
    assert all(after[name] is before[name] for name in before)

  def test_type_is_recorded(self, quiet_interp):
    quiet_interp.run_statement("let f x = x + 1;")
    assert quiet_interp.session()['types']['f']['type']['name'] == 'Function'

  def test_tuple_pattern(self, quiet_interp):
    quiet_interp.run_statement('let (a, b) = (true, "x");')
    assert quiet_interp.lookup("a") == make_bool(True)
    assert quiet_interp.lookup("b") == make_string("x")

  def test_tuple_arity_is_checked(self, quiet_interp):
    with pytest.raises(VSLTypeError):
      quiet_interp.run_statement("let (a, b) = (1, 2, 3);")
    assert quiet_interp.lookup("a") is None

  def test_bind_runs_top_level_action(self, quiet_interp):
    quiet_interp.run_statement("x <- return 5;")
    assert quiet_interp.lookup("x") == make_int(5)

  def test_non_top_level_action_is_bound_as_value(self, quiet_interp):
    quiet_interp.run_statement("t <- trivial;")
    assert quiet_interp.lookup("t")['type'] == "Action"

  def test_polymorphic_action_result_is_rejected(self, quiet_interp):
    with pytest.raises(VSLTypeError, match="Not a monomorphic type"):
      quiet_interp.run_statement("x <- return [];")

  def test_polymorphic_value_is_rejected(self, quiet_interp):
    with pytest.raises(VSLTypeError, match="Not a monomorphic type"):
      quiet_interp.run_statement("g <- (\\x -> x);")
    assert quiet_interp.lookup("g") is None

  def test_declared_bind_type(self, quiet_interp):
    quiet_interp.run_statement("n : Int <- return 3;")
    assert quiet_interp.lookup("n") == make_int(3)
    with pytest.raises(VSLTypeError):
      quiet_interp.run_statement("m : String <- return 3;")

  def test_typedef(self, quiet_interp):
    quiet_interp.run_statement("typedef Count = Int;")
    quiet_interp.run_statement("let (n : Count) = 3;")
    assert quiet_interp.lookup("n") == make_int(3)


class TestRecursion:
  """Test recursive declaration groups"""

  def test_mutual_recursion(self, quiet_interp):
    quiet_interp.run_program("""
      let rec f n = if n == 0 then 1 else n * g (n - 1)
          and g n = if n == 0 then 1 else n * f (n - 1);
      let r = f 4;
    """)
    assert quiet_interp.lookup("r") == make_int(24)

  def test_self_recursion(self, quiet_interp):
    quiet_interp.run_program("""
      let rec sum xs = if null xs then 0 else head xs + sum (tail xs);
      let total = sum [1, 2, 3, 4];
    """)
    assert quiet_interp.lookup("total") == make_int(10)

  def test_local_recursion(self, quiet_interp):
    quiet_interp.run_statement("let r = let rec loop n = if n == 0 then 0 else loop (n - 1) in loop 5;")
    assert quiet_interp.lookup("r") == make_int(0)

  def test_non_function_in_recursive_group(self, quiet_interp):
    with pytest.raises(VSLRuntimeError, match="interpret_function: not a function"):
      quiet_interp.run_statement("let rec x = 1;")

  def test_deep_recursion(self, quiet_interp):
    quiet_interp.run_program("""
      let rec down n = if n == 0 then 0 else down (n - 1);
      v <- return (down 1500);
    """)
    assert quiet_interp.lookup("v") == make_int(0)

  def test_runaway_recursion_is_a_runtime_error(self, quiet_interp):
    quiet_interp.run_statement("let rec loop n = if n < 0 then 0 else loop (n + 1);")
    with pytest.raises(VSLRuntimeError, match="recursion too deep"):
      quiet_interp.run_statement("v <- return (loop 0);")
    quiet_interp.run_statement("let after = 1;")
    assert quiet_interp.lookup("after") == make_int(1)


class TestScoping:
  """Test lexical scoping"""

  def test_shadowing(self, quiet_interp):
    quiet_interp.run_statement("let r = let x = 1 in (let x = 2 in x);")
    assert quiet_interp.lookup("r") == make_int(2)

  def test_outer_binding_unaffected(self, quiet_interp):
    quiet_interp.run_statement("let r = let x = 1 in ((let x = 2 in x) + x);")
    assert quiet_interp.lookup("r") == make_int(3)

  def test_closures_capture_local_scope(self, quiet_interp):
    quiet_interp.run_program("""
      let make n = \\m -> n + m;
      let add2 = make 2;
      let n = 100;
      let r = add2 1;
    """)
    assert quiet_interp.lookup("r") == make_int(3)

  def test_records_and_projections(self, quiet_interp):
    quiet_interp.run_statement("let r = ({a = 1, b = (2, 3)}.b).1 + [10, 20] @ 1;")
    assert quiet_interp.lookup("r") == make_int(23)


class TestBlocks:
  """Test do blocks and their sequencing"""

  def test_block_runs_statements_in_order(self, interp, capsys):
    interp.run_statement('do { print "a"; print "b"; };')
    assert capsys.readouterr().out == "a\nb\n"

  def test_block_result_is_last_statement(self, quiet_interp):
    quiet_interp.run_statement("x <- do { a <- return 1; return (a + 1); };")
    assert quiet_interp.lookup("x") == make_int(2)

  def test_single_wildcard_statement(self, quiet_interp):
    quiet_interp.run_statement("x <- do { _ <- return 5; };")
    assert quiet_interp.lookup("x") == make_int(5)

  def test_block_is_not_run_until_bound(self, interp, capsys):
    interp.run_statement('let act = do { print "ran"; };')
    assert capsys.readouterr().out == ""
    interp.run_statement("act;")
    assert capsys.readouterr().out == "ran\n"

  def test_local_let_and_typedef(self, quiet_interp):
    quiet_interp.run_statement("x <- do { typedef N = Int; let (y : N) = 4; return (y * y); };")
    assert quiet_interp.lookup("x") == make_int(16)

  def test_block_local_term_declarations_reach_the_session(self, quiet_interp):
    # Term declarations made inside a block stay visible afterwards
    quiet_interp.run_statement("x <- do { let {{ k = 7; }}; return 1; };")
    quiet_interp.run_statement("let t = {{ k + 1 }};")
    quiet_interp.run_statement("v <- return (eval_int t);")
    assert quiet_interp.lookup("v") == make_int(8)

  def test_import_inside_block(self, quiet_interp):
    with pytest.raises(VSLRuntimeError, match="block import unimplemented"):
      quiet_interp.run_statement('x <- do { import "defs.term"; return 1; };')


class TestFailures:
  """Test failure reporting and isolation"""

  def test_failure_keeps_earlier_bindings(self, quiet_interp):
    quiet_interp.run_statement("let x = 1;")
    with pytest.raises(VSLRuntimeError, match="head: empty list"):
      quiet_interp.run_statement("let y = head ([] : [Int]);")
    assert quiet_interp.lookup("x") == make_int(1)
    assert quiet_interp.lookup("y") is None

  def test_type_error_prevents_evaluation(self, interp, capsys):
    with pytest.raises(VSLTypeError):
      interp.run_statement('do { print "never"; return (1 + "a"); };')
    assert capsys.readouterr().out == ""

  def test_error_trace_names_functions(self, quiet_interp):
    quiet_interp.run_statement("let g xs = head xs;")
    with pytest.raises(VSLRuntimeError) as exc_info:
      quiet_interp.run_statement("let r = g ([] : [Int]);")
    text = str(exc_info.value)
    assert "in head" in text
    assert "in g" in text

  def test_unknown_name(self, quiet_interp):
    with pytest.raises(VSLTypeError, match="unbound variable: missing"):
      quiet_interp.run_statement("let r = missing;")

  def test_applying_a_non_function(self, quiet_interp):
    with pytest.raises(VSLRuntimeError, match="interpret Application: 1"):
      apply_value(make_int(1), make_int(2), quiet_interp.rc)

  def test_action_in_wrong_context(self, quiet_interp):
    action = make_action('ProofScript', lambda rc: make_unit())
    with pytest.raises(VSLRuntimeError, match="cannot run a ProofScript action in the TopLevel context"):
      run_action(action, quiet_interp.rc)

  def test_any_context_action(self, quiet_interp):
    action = make_action(None, lambda rc: make_string(rc['kind']))
    assert run_action(action, sub_context(quiet_interp.rc, 'Setup', {})) == make_string("Setup")


class TestPrinting:
  """Test result printing of interactive statements"""

  def test_expression_result_is_printed(self, interp, capsys):
    interp.run_statement("1 + 2;")
    assert capsys.readouterr().out == "3\n"

  def test_unit_is_not_printed(self, interp, capsys):
    interp.run_statement("return ();")
    assert capsys.readouterr().out == ""

  def test_function_type_is_printed(self, interp, capsys):
    interp.run_statement("\\x -> int_add x 1;")
    out = capsys.readouterr().out
    assert "<<function>>" in out
    assert "it : Int -> Int" in out

  def test_function_type_is_printed_from_files(self, script, capsys):
    path = script("f <- return (\\x -> int_add x 1);")
    process_file(make_options(), str(path))
    assert capsys.readouterr().out == "f : Int -> Int\n"

  def test_program_does_not_print_results(self, interp, capsys):
    interp.run_program("1 + 2;")
    assert capsys.readouterr().out == ""

  def test_debug_tracing(self, capsys):
    from interpreter import create_interpreter
    debug_interp = create_interpreter(make_options(verbosity=INFO, debug=True))
    debug_interp.run_statement("let x = 1;")
    assert "[debug] Statement: STMT_LET" in capsys.readouterr().out


class TestFiles:
  """Test the file driver"""

  def test_process_file_runs_main(self, script, capsys):
    path = script("""
      let greeting = "hello";
      let main = do { print greeting; };
    """)
    session = process_file(make_options(), str(path))
    assert capsys.readouterr().out == "hello\n"
    assert session['values']['greeting'] == make_string("hello")

  def test_working_directory_is_restored(self, script):
    cwd = os.getcwd()
    path = script("let x = 1;")
    process_file(make_options(), str(path))
    assert os.getcwd() == cwd

  def test_include_is_relative_to_script(self, script, quiet_interp):
    script("let helper = 41;", "lib.vsl")
    path = script('include "lib.vsl";\nlet answer = helper + 1;')
    quiet_interp.run_file(str(path))
    assert quiet_interp.lookup("answer") == make_int(42)

  def test_import_term_declarations(self, script, quiet_interp):
    script("k = 3; m = k * 2;", "defs.term")
    path = script('import "defs.term" as D;\nlet t = {{ D::m + 1 }};\nv <- return (eval_int t);')
    quiet_interp.run_file(str(path))
    assert quiet_interp.lookup("v") == make_int(7)

  def test_missing_import(self, script, quiet_interp):
    path = script('import "nowhere.term";')
    with pytest.raises(VSLRuntimeError, match="cannot read nowhere.term"):
      quiet_interp.run_file(str(path))

  def test_show_position(self, script, capsys):
    path = script('print "here";', "pos.vsl")
    process_file(make_options(show_position=True), str(path))
    out = capsys.readouterr().out
    assert out.startswith("[output] at ")
    assert "pos.vsl:1:1:\n\there\n" in out

  def test_errors_stop_the_file(self, script, quiet_interp):
    path = script('let a = 1;\nlet b = head ([] : [Int]);\nlet c = 3;')
    with pytest.raises(VSLError):
      quiet_interp.run_file(str(path))
    assert quiet_interp.lookup("a") == make_int(1)
    assert quiet_interp.lookup("c") is None
