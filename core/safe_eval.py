"""A small expression evaluator for the owner's ``eval`` command.

Only literals, arithmetic, comparisons, boolean logic and conditional
expressions are accepted. Names, calls, attribute access, subscripts and
comprehensions are rejected before anything is evaluated.
"""

import ast
import operator
from typing import Any, Callable, Dict, Type

MAX_SOURCE = 500
MAX_EXPONENT = 64
MAX_RESULT_LEN = 10_000
MAX_INT_BITS = 4096


class UnsafeExpression(ValueError):
    pass


_BINARY: Dict[Type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY: Dict[Type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARE: Dict[Type[ast.cmpop], Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


def _check_size(value: Any) -> Any:
    if isinstance(value, int) and value.bit_length() > MAX_INT_BITS:
        raise UnsafeExpression("result too large")
    if isinstance(value, (str, bytes, list, tuple)) and len(value) > MAX_RESULT_LEN:
        raise UnsafeExpression("result too large")
    return value


def _eval(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant):
        if isinstance(node.value, (int, float, complex, str, bool, type(None))):
            return node.value
        raise UnsafeExpression(f"unsupported constant {node.value!r}")
    if isinstance(node, ast.BinOp):
        op = _BINARY.get(type(node.op))
        if op is None:
            raise UnsafeExpression(f"operator {type(node.op).__name__} not allowed")
        left, right = _eval(node.left), _eval(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_EXPONENT:
            raise UnsafeExpression("exponent too large")
        if isinstance(node.op, ast.Mult):
            for seq, count in ((left, right), (right, left)):
                if isinstance(seq, (str, list, tuple)) and isinstance(count, int):
                    if len(seq) * count > MAX_RESULT_LEN:
                        raise UnsafeExpression("result too large")
        return _check_size(op(left, right))
    if isinstance(node, ast.UnaryOp):
        op = _UNARY.get(type(node.op))
        if op is None:
            raise UnsafeExpression(f"operator {type(node.op).__name__} not allowed")
        return op(_eval(node.operand))
    if isinstance(node, ast.BoolOp):
        values = [_eval(value) for value in node.values]
        if isinstance(node.op, ast.And):
            result = True
            for value in values:
                result = value
                if not value:
                    break
            return result
        result = False
        for value in values:
            result = value
            if value:
                break
        return result
    if isinstance(node, ast.Compare):
        left = _eval(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            op = _COMPARE.get(type(op_node))
            if op is None:
                raise UnsafeExpression(f"comparison {type(op_node).__name__} not allowed")
            right = _eval(comparator)
            if not op(left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.IfExp):
        return _eval(node.body) if _eval(node.test) else _eval(node.orelse)
    if isinstance(node, ast.Tuple):
        return tuple(_eval(elt) for elt in node.elts)
    if isinstance(node, ast.List):
        return [_eval(elt) for elt in node.elts]
    if isinstance(node, ast.Dict):
        if any(key is None for key in node.keys):
            raise UnsafeExpression("dict unpacking not allowed")
        return {_eval(key): _eval(value) for key, value in zip(node.keys, node.values)}
    raise UnsafeExpression(f"{type(node).__name__} not allowed")


def safe_eval(source: str) -> Any:
    source = (source or "").strip()
    if not source:
        raise UnsafeExpression("empty expression")
    if len(source) > MAX_SOURCE:
        raise UnsafeExpression("expression too long")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise UnsafeExpression(f"syntax error: {exc.msg}") from exc
    return _eval(tree)
