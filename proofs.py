"""
VSL proof scripts and verification specs
ProofScript actions work on a goal state, Setup actions collect a spec,
TopLevel commands run them and record the outcome in the session
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import random

from error_handling import VSLRuntimeError
from session import ERROR, INFO, WARN, get_session, print_out_top, put_session, sub_context
from terms import (
  COQ_PREAMBLE, evaluate_term, make_binop, make_const, make_var, pretty_term,
  simplify, term_vars, translate_coq
)
from utilities import expect_type, fun_val, pure_val, top_level
from values import (
  make_action, make_proof_result, make_spec, make_term, make_theorem, make_unit
)


ASCII_OPTS = {'ascii': True, 'base': 10, 'color': False}


# ============================================================================
# GOAL STATE
# ============================================================================

def make_goal_state(goal: Dict) -> Dict:
  """Mutable state threaded through one ProofScript run"""
  return {'goal': goal, 'status': None, 'counterexample': [], 'tactic': None}


def make_setup_state() -> Dict:
  """Mutable state collected by one Setup run"""
  return {'vars': [], 'pre': [], 'post': []}


def proof_script(thunk: Callable[[Dict], Dict]) -> Dict:
  return make_action('ProofScript', thunk)


def setup_action(thunk: Callable[[Dict], Dict]) -> Dict:
  return make_action('Setup', thunk)


def open_goal(rc: Dict, tactic: str) -> Dict:
  """Goal state of the running proof, failing if it is already closed"""
  state = rc['state']
  if state['status'] is not None:
    raise VSLRuntimeError(f"{tactic}: no goal remains to prove")
  return state


def close_goal(state: Dict, status: str, tactic: str, counterexample: Optional[List] = None) -> Dict:
  state['status'] = status
  state['tactic'] = tactic
  state['counterexample'] = counterexample or []
  return make_unit()


def bit_term(func_name: str, v: Dict) -> Dict:
  term = expect_type(func_name, v, "Term")
  if term['type'] != 'Bit':
    raise VSLRuntimeError(f"{func_name}: expected a Bit term, got {term['type']}")
  return term


def conjunction(terms: List[Dict]) -> Dict:
  result = make_const(True, 'Bit')
  for term in terms:
    result = term if result['kind'] == 'const' else make_binop('&&', result, term, 'Bit')
  return result


def show_counterexample(counterexample: List[Tuple[str, Any]]) -> str:
  return ", ".join(f"{name} = {value}" for name, value in counterexample)


# ============================================================================
# TACTICS
# ============================================================================

def tactic_trivial(rc: Dict) -> Dict:
  """Close goals that simplify to True"""
  state = open_goal(rc, "trivial")
  goal = simplify(state['goal'])
  if goal['kind'] == 'const' and goal['value'] is True:
    return close_goal(state, 'valid', 'trivial')
  raise VSLRuntimeError(f"trivial: goal is not trivially true: {pretty_term(goal, ASCII_OPTS)}")


def tactic_admit(message: Dict) -> Dict:
  def thunk(rc):
    state = open_goal(rc, "admit")
    print_out_top(rc, WARN, f"WARNING: admitting goal: {expect_type('admit', message, 'String')}")
    return close_goal(state, 'admitted', 'admit')
  return proof_script(thunk)


def tactic_assume_valid(rc: Dict) -> Dict:
  return close_goal(open_goal(rc, "assume_valid"), 'admitted', 'assume_valid')


def tactic_goal_eval(rc: Dict) -> Dict:
  """Replace the goal by its simplified form"""
  state = open_goal(rc, "goal_eval")
  state['goal'] = simplify(state['goal'])
  return make_unit()


def tactic_print_goal(rc: Dict) -> Dict:
  state = open_goal(rc, "print_goal")
  print_out_top(rc, INFO, f"Goal: {pretty_term(state['goal'], get_session(rc)['pp_opts'])}")
  return make_unit()


def _assignments(variables: List[Tuple[str, str]], count: int, rng: random.Random):
  """Edge assignments first, then random ones"""
  if not variables:
    yield {}
    return
  yield {name: (False if t == 'Bit' else 0) for name, t in variables}
  yield {name: (True if t == 'Bit' else 1) for name, t in variables}
  yield {name: (True if t == 'Bit' else -1) for name, t in variables}
  for _ in range(max(0, count - 3)):
    yield {name: (rng.random() < 0.5 if t == 'Bit' else rng.randint(-1000, 1000)) for name, t in variables}


def tactic_quickcheck(count: Dict) -> Dict:
  """Test the goal on concrete assignments, closing it when none fails"""
  def thunk(rc):
    state = open_goal(rc, "quickcheck")
    n = expect_type("quickcheck", count, "Int")
    variables = term_vars(state['goal'])
    rng = random.Random()
    tried = 0
    for assignment in _assignments(variables, n, rng):
      tried += 1
      if not evaluate_term(state['goal'], assignment):
        cex = [(name, assignment[name]) for name, _ in variables]
        print_out_top(rc, INFO, f"----------Counterexample----------\n{show_counterexample(cex)}")
        return close_goal(state, 'invalid', 'quickcheck', cex)
    print_out_top(rc, WARN, f"WARNING: quickcheck passed {tried} tests, goal is not proved")
    return close_goal(state, 'tested', 'quickcheck')
  return proof_script(thunk)


# ============================================================================
# TOP-LEVEL PROOF COMMANDS
# ============================================================================

def run_proof(goal: Dict, script: Dict, rc: Dict, bic: Dict) -> Dict:
  """Run a ProofScript against goal and return the final goal state"""
  state = make_goal_state(goal)
  bic['run_action'](script, sub_context(rc, 'ProofScript', state))
  if state['status'] is None:
    raise VSLRuntimeError(f"proof script ended with an unsolved goal: {pretty_term(state['goal'], ASCII_OPTS)}")
  return state


def record_proof(rc: Dict, entry: Dict) -> None:
  session = get_session(rc)
  put_session(rc, {**session, 'proofs': session['proofs'] + [entry]})


def prove_impl(options: Dict, bic: Dict) -> Dict:
  def prove(script, goal_value):
    def thunk(rc):
      goal = bit_term("prove", goal_value)
      state = run_proof(goal, script, rc, bic)
      record_proof(rc, {
          'kind': 'theorem',
          'name': f"goal {len(get_session(rc)['proofs']) + 1}",
          'goal': pretty_term(goal, ASCII_OPTS),
          'status': state['status'],
          'tactic': state['tactic'],
      })
      return make_proof_result(state['status'] != 'invalid', state['counterexample'])
    return top_level(thunk)
  return fun_val(2, prove)(options, bic)


def prove_print_impl(options: Dict, bic: Dict) -> Dict:
  def prove_print(script, goal_value):
    def thunk(rc):
      goal = bit_term("prove_print", goal_value)
      state = run_proof(goal, script, rc, bic)
      if state['status'] == 'invalid':
        raise VSLRuntimeError(f"prove: goal is invalid, counterexample: {show_counterexample(state['counterexample'])}")
      record_proof(rc, {
          'kind': 'theorem',
          'name': f"goal {len(get_session(rc)['proofs']) + 1}",
          'goal': pretty_term(goal, ASCII_OPTS),
          'status': state['status'],
          'tactic': state['tactic'],
      })
      return make_theorem(goal, state['status'])
    return top_level(thunk)
  return fun_val(2, prove_print)(options, bic)


# ============================================================================
# SPECIFICATIONS
# ============================================================================

def spec_fresh_var(name: Dict, term_type: Dict) -> Dict:
  def thunk(rc):
    var = make_var(expect_type("spec_fresh_var", name, "String"), expect_type("spec_fresh_var", term_type, "Type"))
    rc['state']['vars'].append(var)
    return make_term(var)
  return setup_action(thunk)


def spec_condition(func_name: str, key: str) -> Callable[[Dict], Dict]:
  def condition(term_value: Dict) -> Dict:
    def thunk(rc):
      rc['state'][key].append(bit_term(func_name, term_value))
      return make_unit()
    return setup_action(thunk)
  return condition


def run_setup(setup: Dict, rc: Dict, bic: Dict) -> Dict:
  state = make_setup_state()
  bic['run_action'](setup, sub_context(rc, 'Setup', state))
  return state


def spec_goal(setup_state: Dict) -> Dict:
  """Preconditions imply postconditions"""
  return make_binop('==>', conjunction(setup_state['pre']), conjunction(setup_state['post']), 'Bit')


def verify_spec_impl(options: Dict, bic: Dict) -> Dict:
  def verify_spec(name_value, setup, script):
    def thunk(rc):
      name = expect_type("verify_spec", name_value, "String")
      setup_state = run_setup(setup, rc, bic)
      state = run_proof(spec_goal(setup_state), script, rc, bic)
      if state['status'] == 'invalid':
        raise VSLRuntimeError(
            f"verify_spec: {name} failed, counterexample: {show_counterexample(state['counterexample'])}")
      status = 'verified' if state['status'] == 'valid' else state['status']
      record_proof(rc, {'kind': 'spec', 'name': name, 'goal': pretty_term(spec_goal(setup_state), ASCII_OPTS),
                        'status': status, 'tactic': state['tactic']})
      print_out_top(rc, INFO, f"Proof succeeded! {name}")
      return make_spec(name, setup_state['vars'], setup_state['pre'], setup_state['post'], status)
    return top_level(thunk)
  return fun_val(3, verify_spec)(options, bic)


def unsafe_assume_spec_impl(options: Dict, bic: Dict) -> Dict:
  def unsafe_assume_spec(name_value, setup):
    def thunk(rc):
      name = expect_type("unsafe_assume_spec", name_value, "String")
      setup_state = run_setup(setup, rc, bic)
      record_proof(rc, {'kind': 'spec', 'name': name, 'goal': pretty_term(spec_goal(setup_state), ASCII_OPTS),
                        'status': 'assumed', 'tactic': None})
      print_out_top(rc, WARN, f"WARNING: assuming specification {name} without proof")
      return make_spec(name, setup_state['vars'], setup_state['pre'], setup_state['post'], 'assumed')
    return top_level(thunk)
  return fun_val(2, unsafe_assume_spec)(options, bic)


# ============================================================================
# VERIFICATION SUMMARY
# ============================================================================

def verification_summary(session: Dict) -> Dict:
  """Collect recorded proofs and specs for reporting"""
  theorems = [p for p in session['proofs'] if p['kind'] == 'theorem']
  specs = [p for p in session['proofs'] if p['kind'] == 'spec']
  statuses: Dict[str, int] = {}
  for entry in session['proofs']:
    statuses[entry['status']] = statuses.get(entry['status'], 0) + 1
  return {'theorems': theorems, 'specs': specs, 'totals': statuses}


def format_summary_pretty(summary: Dict) -> str:
  lines = ["Verification summary", "====================",
           f"{len(summary['theorems'])} theorem(s), {len(summary['specs'])} specification(s)"]
  for entry in summary['theorems']:
    lines.append(f"  theorem {entry['name']}: {entry['status']}  {entry['goal']}")
  for entry in summary['specs']:
    lines.append(f"  spec {entry['name']}: {entry['status']}")
  return "\n".join(lines)


def format_summary(summary: Dict, summary_format: str) -> str:
  if summary_format == 'json':
    return json.dumps(summary, indent=2)
  return format_summary_pretty(summary)


def write_verification_summary(rc: Dict) -> None:
  """Write the summary file named in the options, if any"""
  options = rc['options']
  if not options.get('summary_file'):
    return
  text = format_summary(verification_summary(get_session(rc)), options['summary_format'])
  try:
    with open(options['summary_file'], 'w', encoding='utf-8') as f:
      f.write(text + "\n")
  except OSError as e:
    raise VSLRuntimeError(f"cannot write summary file {options['summary_file']}: {e.strerror}")


def summarize_verification(rc: Dict) -> Dict:
  print_out_top(rc, INFO, format_summary_pretty(verification_summary(get_session(rc))))
  return make_unit()


def write_coq_term(name: Dict, term_value: Dict, filename: Dict) -> Dict:
  def thunk(rc):
    path = expect_type("write_coq_term", filename, "String")
    text = COQ_PREAMBLE + "\n" + translate_coq(expect_type("write_coq_term", name, "String"),
                                                 expect_type("write_coq_term", term_value, "Term"))
    try:
      with open(path, 'w', encoding='utf-8') as f:
        f.write(text)
    except OSError as e:
      print_out_top(rc, ERROR, f"write_coq_term: cannot write {path}")
      raise VSLRuntimeError(f"write_coq_term: cannot write {path}: {e.strerror}")
    return make_unit()
  return top_level(thunk)


# ============================================================================
# PRIMITIVE TABLE
# ============================================================================

# (name, schema, implementation, lifecycle, documentation)
PROOF_PRIMITIVES = [
    ("trivial", "ProofScript ()", pure_val(proof_script(tactic_trivial)), 'Current',
     ["Close a goal that simplifies to True."]),
    ("admit", "String -> ProofScript ()", fun_val(1, tactic_admit), 'Current',
     ["Close the current goal without proof, printing the given reason."]),
    ("assume_valid", "ProofScript ()", pure_val(proof_script(tactic_assume_valid)), 'Deprecated',
     ["Close the current goal without proof. Use 'admit' instead."]),
    ("goal_eval", "ProofScript ()", pure_val(proof_script(tactic_goal_eval)), 'Current',
     ["Simplify the current goal by constant folding."]),
    ("print_goal", "ProofScript ()", pure_val(proof_script(tactic_print_goal)), 'Current',
     ["Print the current goal."]),
    ("quickcheck", "Int -> ProofScript ()", fun_val(1, tactic_quickcheck), 'Current',
     ["Test the goal on the given number of assignments. A passing goal",
      "is closed as tested, a failing one reports a counterexample."]),
    ("prove", "ProofScript () -> Term -> TopLevel ProofResult", prove_impl, 'Current',
     ["Run a proof script on a Bit term and return Valid or a counterexample."]),
    ("prove_print", "ProofScript () -> Term -> TopLevel Theorem", prove_print_impl, 'Current',
     ["Run a proof script on a Bit term, failing unless the goal holds."]),
    ("spec_fresh_var", "String -> Type -> Setup Term", fun_val(2, spec_fresh_var), 'Current',
     ["Declare a fresh symbolic variable of the specification."]),
    ("spec_precond", "Term -> Setup ()", fun_val(1, spec_condition("spec_precond", 'pre')), 'Current',
     ["Add a precondition to the specification."]),
    ("spec_postcond", "Term -> Setup ()", fun_val(1, spec_condition("spec_postcond", 'post')), 'Current',
     ["Add a postcondition to the specification."]),
    ("verify_spec", "String -> Setup () -> ProofScript () -> TopLevel Spec", verify_spec_impl, 'Current',
     ["Prove that the preconditions of a specification imply its postconditions."]),
    ("unsafe_assume_spec", "String -> Setup () -> TopLevel Spec", unsafe_assume_spec_impl, 'Current',
     ["Record a specification as holding without proving it."]),
    ("summarize_verification", "TopLevel ()", pure_val(top_level(summarize_verification)), 'Experimental',
     ["Print the theorems and specifications proved so far."]),
    ("write_coq_term", "String -> Term -> String -> TopLevel ()", fun_val(3, write_coq_term), 'Experimental',
     ["write_coq_term name term file: export a term as a Coq definition."]),
]
