"""
Utilities module for the VSL interpreter
Payload extraction, error builders and factories shared by the primitives
"""

from typing import Any, Callable, Dict, List, Optional
from error_handling import VSLRuntimeError
from values import make_action, make_builtin


# ==================== VALUE EXTRACTION UTILITIES ====================

def is_value_dict(val: Any) -> bool:
  return isinstance(val, dict) and 'type' in val and 'value' in val


def expect_type(func_name: str, val: Dict, expected: str) -> Any:
  """Return the payload of val, failing when its tag is not expected"""
  if not is_value_dict(val) or val['type'] != expected:
    raise type_mismatch_error(func_name, "argument", expected, val)
  return val['value']


# ==================== ERROR MESSAGE BUILDERS ====================

def type_mismatch_error(func_name: str, param_name: str, expected: str, actual: Any) -> VSLRuntimeError:
  """A primitive received a value with the wrong tag"""
  actual_type = actual.get('type', 'Unknown') if isinstance(actual, dict) else type(actual).__name__
  return VSLRuntimeError(f"{func_name} requires {expected} for {param_name}, got {actual_type}")


def arity_error(func_name: str, expected: int, got: int) -> VSLRuntimeError:
  return VSLRuntimeError(f"{func_name} requires {expected} arguments, got {got}")


def operation_error(op: str, left_type: str, right_type: str) -> VSLRuntimeError:
  return VSLRuntimeError(f"Cannot {op} {left_type} and {right_type}")


# ==================== VALIDATION UTILITIES ====================

def validate_function_args(func_name: str, args: List[Dict], expected_types: List[str]) -> None:
  """Check the count and tags of a primitive's arguments"""
  if len(args) != len(expected_types):
    raise arity_error(func_name, len(expected_types), len(args))

  for i, (arg, expected) in enumerate(zip(args, expected_types)):
    if not is_value_dict(arg) or arg['type'] != expected:
      raise type_mismatch_error(func_name, f"argument {i+1}", expected, arg)


# ==================== BINARY OPERATION FACTORIES ====================

def binary_comparison_op(
  op: Callable[[Any, Any], bool],
  op_name: str,
  allowed_types: Optional[List[str]] = None
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for curried comparison primitives

  Args:
    op: Python operator function (e.g., operator.lt)
    op_name: Name for error messages
    allowed_types: Value tags the comparison accepts

  Returns:
    Function of two runtime values producing a Bool
  """
  allowed = allowed_types or ["Int"]

  def comparison(x: Dict, y: Dict) -> Dict:
    if x['type'] != y['type'] or x['type'] not in allowed:
      raise operation_error(op_name, x['type'], y['type'])
    return {'type': "Bool", 'value': op(x['value'], y['value'])}

  return comparison


def binary_arithmetic_op(
  op: Callable[[Any, Any], Any],
  op_name: str,
  allowed_types: Optional[List[str]] = None,
  nonzero_divisor: bool = False
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for curried arithmetic primitives

  Args:
    op: Python operator function (e.g., operator.add)
    op_name: Name for error messages
    allowed_types: Value tags the operation accepts
    nonzero_divisor: Fail when the right operand is zero

  Returns:
    Function of two runtime values producing a value of the same tag
  """
  allowed = allowed_types or ["Int"]

  def arithmetic(x: Dict, y: Dict) -> Dict:
    if x['type'] != y['type'] or x['type'] not in allowed:
      raise operation_error(op_name, x['type'], y['type'])
    if nonzero_divisor and y['value'] == 0:
      raise VSLRuntimeError(f"Cannot {op_name} by zero")
    return {'type': x['type'], 'value': op(x['value'], y['value'])}

  return arithmetic


# ==================== PRIMITIVE FACTORIES ====================

def pure_val(value: Dict) -> Callable[[Dict, Dict], Dict]:
  """Primitive implementation returning a constant value"""
  return lambda options, bic: value


def fun_val(arity: int, func: Callable[..., Dict]) -> Callable[[Dict, Dict], Dict]:
  """
  Primitive implementation for a curried function

  Args:
    arity: Number of arguments collected before func runs
    func: Python function over runtime values

  Returns:
    Implementation taking (options, builtin_context)
  """
  return lambda options, bic: make_builtin(None, arity, func)


def top_level(thunk: Callable[[Dict], Dict]) -> Dict:
  """Action that may only run in the TopLevel context"""
  return make_action('TopLevel', thunk)
