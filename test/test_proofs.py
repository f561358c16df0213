"""
Proof script and specification tests for VSL
Tactics, prove, specs, the verification summary and Coq export
"""

import json
import pytest
from error_handling import VSLRuntimeError, VSLTypeError
from interpreter import process_file
from proofs import format_summary_pretty, verification_summary
from session import SILENT, make_options


@pytest.fixture
def symbolic(quiet_interp):
  """Quiet interpreter with symbolic x : Integer and b : Bit"""
  quiet_interp.run_statement('x <- fresh_symbolic "x" {| Integer |};')
  quiet_interp.run_statement('b <- fresh_symbolic "b" {| Bit |};')
  return quiet_interp


def proof_result(interp, script, goal):
  interp.run_statement(f"r <- prove {script} {goal};")
  return interp.lookup("r")['value']


class TestTactics:
  """Test ProofScript tactics through prove"""

  def test_trivial(self, symbolic):
    result = proof_result(symbolic, "trivial", "{{ x == x || True }}")
    assert result['valid'] is True

  def test_trivial_fails_on_open_goal(self, symbolic):
    with pytest.raises(VSLRuntimeError, match="trivial: goal is not trivially true"):
      proof_result(symbolic, "trivial", "{{ x == x }}")

  def test_goal_eval_then_trivial(self, symbolic):
    result = proof_result(symbolic, "do { goal_eval; trivial; }", "{{ 2 + 2 == 4 }}")
    assert result['valid'] is True

  def test_quickcheck_finds_counterexample(self, symbolic):
    result = proof_result(symbolic, "(quickcheck 10)", "{{ x + 1 == 1 }}")
    assert result['valid'] is False
    assert result['counterexample'] == [('x', 1)]

  def test_quickcheck_passing_goal(self, symbolic):
    result = proof_result(symbolic, "(quickcheck 50)", "{{ x * x >= 0 }}")
    assert result['valid'] is True
    assert symbolic.session()['proofs'][-1]['status'] == 'tested'

  def test_quickcheck_counts_the_tests_it_ran(self, interp, capsys):
    interp.run_statement("r <- prove (quickcheck 10) {{ 1 < 2 }};")
    assert "quickcheck passed 1 tests" in capsys.readouterr().out

  def test_admit(self, interp, capsys):
    interp.run_statement('r <- prove (admit "later") {{ False }};')
    assert "WARNING: admitting goal: later" in capsys.readouterr().out
    assert interp.session()['proofs'][-1]['status'] == 'admitted'

  def test_assume_valid_is_deprecated(self, quiet_interp):
    with pytest.raises(VSLTypeError, match="unbound variable: assume_valid"):
      quiet_interp.run_statement("r <- prove assume_valid {{ False }};")
    quiet_interp.run_statement("enable_deprecated;")
    quiet_interp.run_statement("r <- prove assume_valid {{ False }};")
    assert quiet_interp.lookup("r")['value']['valid'] is True

  def test_print_goal(self, interp, capsys):
    interp.run_statement('x <- fresh_symbolic "x" {| Integer |};')
    interp.run_statement("set_ascii true;")
    interp.run_statement("r <- prove (do { print_goal; admit \"x\"; }) {{ x > 0 }};")
    assert "Goal: x > 0" in capsys.readouterr().out

  def test_tactics_after_goal_is_closed(self, symbolic):
    with pytest.raises(VSLRuntimeError, match="no goal remains"):
      proof_result(symbolic, "(do { trivial; trivial; })", "{{ True }}")

  def test_unsolved_goal(self, symbolic):
    with pytest.raises(VSLRuntimeError, match="unsolved goal"):
      proof_result(symbolic, "goal_eval", "{{ b }}")

  def test_goal_must_be_bit(self, symbolic):
    with pytest.raises(VSLRuntimeError, match="expected a Bit term"):
      proof_result(symbolic, "trivial", "{{ x }}")

  def test_tactic_outside_proof_script(self, quiet_interp):
    with pytest.raises(VSLTypeError):
      quiet_interp.run_statement("do { trivial; print 1; };")


class TestProvePrint:
  """Test prove_print"""

  def test_valid_goal_gives_theorem(self, symbolic):
    symbolic.run_statement("thm <- prove_print trivial {{ b ==> True }};")
    theorem = symbolic.lookup("thm")
    assert theorem['type'] == "Theorem"
    assert theorem['value']['status'] == 'valid'

  def test_invalid_goal_fails(self, symbolic):
    with pytest.raises(VSLRuntimeError, match="counterexample: x = 0"):
      symbolic.run_statement("thm <- prove_print (quickcheck 5) {{ x != 0 }};")


class TestSpecs:
  """Test Setup blocks and specifications"""

  SETUP = """
    let inc_setup = do {
      n <- spec_fresh_var "n" {| Integer |};
      spec_precond {{ n >= 0 }};
      spec_postcond {{ n + 1 > n }};
    };
  """

  def test_verify_spec(self, interp, capsys):
    interp.run_program(self.SETUP)
    interp.run_statement('s <- verify_spec "inc" inc_setup (quickcheck 20);')
    spec = interp.lookup("s")['value']
    assert spec['name'] == "inc"
    assert spec['status'] == 'tested'
    assert len(spec['pre']) == 1
    assert "Proof succeeded! inc" in capsys.readouterr().out

  def test_failing_spec(self, quiet_interp):
    quiet_interp.run_program("""
      let bad = do {
        n <- spec_fresh_var "n" {| Integer |};
        spec_postcond {{ n > 0 }};
      };
    """)
    with pytest.raises(VSLRuntimeError, match="verify_spec: bad failed, counterexample: n = 0"):
      quiet_interp.run_statement('s <- verify_spec "bad" bad (quickcheck 10);')

  def test_assumed_spec(self, interp, capsys):
    interp.run_program(self.SETUP)
    interp.run_statement('s <- unsafe_assume_spec "inc" inc_setup;')
    assert interp.lookup("s")['value']['status'] == 'assumed'
    assert "assuming specification inc without proof" in capsys.readouterr().out

  def test_setup_commands_need_setup_context(self, quiet_interp):
    with pytest.raises(VSLTypeError):
      quiet_interp.run_statement("r <- prove (spec_precond {{ True }}) {{ True }};")


class TestSummary:
  """Test the verification summary"""

  def test_summary_contents(self, symbolic):
    proof_result(symbolic, "trivial", "{{ True }}")
    proof_result(symbolic, "(quickcheck 5)", "{{ x + 1 == 1 }}")
    summary = verification_summary(symbolic.session())
    assert [t['status'] for t in summary['theorems']] == ['valid', 'invalid']
    assert summary['totals'] == {'valid': 1, 'invalid': 1}
    text = format_summary_pretty(summary)
    assert text.startswith("Verification summary\n")
    assert "2 theorem(s), 0 specification(s)" in text

  def test_json_summary_file(self, script, tmp_path):
    summary_file = tmp_path / "summary.json"
    path = script("""
      let setup = do {
        n <- spec_fresh_var "n" {| Integer |};
        spec_postcond {{ n == n }};
      };
      s <- verify_spec "refl" setup (do { goal_eval; quickcheck 3; });
      r <- prove trivial {{ True }};
    """)
    options = make_options(verbosity=SILENT, summary_file=str(summary_file), summary_format='json')
    process_file(options, str(path))
    summary = json.loads(summary_file.read_text())
    assert [s['name'] for s in summary['specs']] == ["refl"]
    assert summary['theorems'][0]['status'] == 'valid'

  def test_pretty_summary_file(self, script, tmp_path):
    summary_file = tmp_path / "summary.txt"
    path = script("r <- prove trivial {{ True }};")
    process_file(make_options(verbosity=SILENT, summary_file=str(summary_file)), str(path))
    assert "theorem goal 1: valid  True" in summary_file.read_text()

  def test_relative_summary_path_follows_the_starting_directory(self, tmp_path, monkeypatch):
    scripts = tmp_path / "scripts"
    run_dir = tmp_path / "run"
    scripts.mkdir()
    run_dir.mkdir()
    (scripts / "lib.vsl").write_text("r <- prove trivial {{ True }};", encoding="utf-8")
    (scripts / "main.vsl").write_text('include "lib.vsl";', encoding="utf-8")
    monkeypatch.chdir(run_dir)
    process_file(make_options(verbosity=SILENT, summary_file="summary.txt"), str(scripts / "main.vsl"))
    assert (run_dir / "summary.txt").exists()
    assert not (scripts / "summary.txt").exists()

  def test_summarize_verification(self, interp, capsys):
    interp.run_statement("enable_experimental;")
    interp.run_statement("r <- prove trivial {{ True }};")
    interp.run_statement("summarize_verification;")
    assert "1 theorem(s)" in capsys.readouterr().out


class TestCoqExport:
  """Test write_coq_term"""

  def test_write_coq_term(self, quiet_interp, tmp_path):
    out = tmp_path / "inc.v"
    quiet_interp.run_statement("enable_experimental;")
    quiet_interp.run_statement('x <- fresh_symbolic "x" {| Integer |};')
    quiet_interp.run_statement(f'write_coq_term "inc" {{{{ x + 1 }}}} "{out.as_posix()}";')
    text = out.read_text()
    assert text.startswith("From Coq Require Import ZArith.")
    assert "Definition inc (x : Z) : Z :=" in text
