# gateway/script/interpreter.py
"""
Restricted interpreter for board control scripts.

Scripts use Python syntax. The source is parsed with `ast`, checked against a
whitelist of node types (validate()) and then walked by Interpreter; nothing is
ever handed to eval/exec. Scripts only see the names the engine injects plus a
small set of safe builtins, attribute access is limited to capability exports
and a few container/str methods, and every statement and call counts against
a step budget.
"""
from __future__ import annotations

import ast
import logging
import operator
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from gateway.core.errors import ScriptBudgetExceeded, ScriptExecutionError, ScriptSyntaxError

DEFAULT_MAX_STEPS = 200_000
DEFAULT_MAX_DEPTH = 64
MAX_SEQUENCE_REPEAT = 100_000
MAX_RESULT_LENGTH = 1_000_000
MAX_INT_EXPONENT = 4096

_STATEMENTS = (
    ast.Module, ast.Expr, ast.Assign, ast.AugAssign, ast.If, ast.While, ast.For,
    ast.Break, ast.Continue, ast.Pass, ast.FunctionDef, ast.Return, ast.Global,
    ast.Nonlocal, ast.Try, ast.Raise, ast.ExceptHandler,
)
_EXPRESSIONS = (
    ast.BoolOp, ast.BinOp, ast.UnaryOp, ast.Compare, ast.IfExp, ast.Call, ast.Constant,
    ast.Name, ast.Attribute, ast.Subscript, ast.Slice, ast.List, ast.Tuple, ast.Dict,
    ast.Set, ast.JoinedStr, ast.FormattedValue, ast.Lambda, ast.keyword, ast.arguments,
    ast.arg,
)
_OPERATORS = (ast.expr_context, ast.operator, ast.cmpop, ast.boolop, ast.unaryop)

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.LShift: operator.lshift,
    ast.RShift: operator.rshift,
    ast.BitOr: operator.or_,
    ast.BitXor: operator.xor,
    ast.BitAnd: operator.and_,
}
_CMP_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}
_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Invert: operator.invert,
}

ALLOWED_METHODS: Dict[type, frozenset] = {
    list: frozenset({"append", "extend", "insert", "pop", "remove", "index", "count", "sort", "reverse", "clear", "copy"}),
    dict: frozenset({"get", "keys", "values", "items", "pop", "update", "setdefault", "clear", "copy"}),
    str: frozenset({
        "upper", "lower", "strip", "lstrip", "rstrip", "split", "join", "replace", "startswith",
        "endswith", "find", "isdigit", "title", "zfill", "capitalize",
    }),
    float: frozenset({"is_integer"}),
}

class ScriptRuntimeError(RuntimeError):
    """Raised for operations the interpreter refuses at run time."""


def _check_length(n: int, what: str = "Result") -> None:
    if n > MAX_RESULT_LENGTH:
        raise ScriptRuntimeError(f"{what} of {n} items is too large")


def _check_format_spec(spec: str) -> None:
    for digits in re.findall(r"\d+", spec):
        _check_length(int(digits), "Format width")


def _bounded_range(*args: int) -> range:
    r = range(*args)
    try:
        n = len(r)
    except OverflowError:
        n = MAX_RESULT_LENGTH + 1
    _check_length(n, "range()")
    return r


# str/list methods whose result size depends on an argument get a checked wrapper.
def _str_zfill(s: str) -> Callable[..., str]:
    def zfill(width: int) -> str:
        if isinstance(width, int):
            _check_length(width)
        return s.zfill(width)
    return zfill


def _str_replace(s: str) -> Callable[..., str]:
    def replace(old: str, new: str, count: int = -1) -> str:
        if isinstance(old, str) and isinstance(new, str) and len(new) > len(old):
            hits = s.count(old) if old else len(s) + 1
            if isinstance(count, int) and count >= 0:
                hits = min(hits, count)
            _check_length(len(s) + hits * (len(new) - len(old)))
        return s.replace(old, new, count)
    return replace


def _str_join(s: str) -> Callable[..., str]:
    def join(items: Iterable[str]) -> str:
        items = list(items)
        _check_length(len(s) * max(0, len(items) - 1) + sum(len(i) for i in items if isinstance(i, str)))
        return s.join(items)
    return join


def _list_extend(xs: list) -> Callable[..., None]:
    def extend(items: Iterable[Any]) -> None:
        items = list(items)
        _check_length(len(xs) + len(items))
        xs.extend(items)
    return extend


SIZED_METHODS: Dict[type, Dict[str, Callable[[Any], Callable[..., Any]]]] = {
    str: {"zfill": _str_zfill, "replace": _str_replace, "join": _str_join},
    list: {"extend": _list_extend},
}


SAFE_EXCEPTIONS: Dict[str, type] = {
    "Exception": Exception,
    "ValueError": ValueError,
    "TypeError": TypeError,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "ZeroDivisionError": ZeroDivisionError,
    "RuntimeError": RuntimeError,
    "ArithmeticError": ArithmeticError,
    "LookupError": LookupError,
}


def _safe_builtins() -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "abs": abs, "all": all, "any": any, "bool": bool, "dict": dict, "enumerate": enumerate,
        "filter": filter, "float": float, "int": int, "len": len, "list": list, "map": map,
        "max": max, "min": min, "range": _bounded_range, "reversed": reversed, "round": round,
        "sorted": sorted, "str": str, "sum": sum, "tuple": tuple, "zip": zip,
        "True": True, "False": False, "None": None,
    }
    out.update(SAFE_EXCEPTIONS)
    return out


SAFE_BUILTINS = _safe_builtins()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def parse(source: str, *, reserved: Iterable[str] = (), filename: str = "<board script>") -> ast.Module:
    """Parse + validate; raises ScriptSyntaxError with the offending line."""
    try:
        tree = ast.parse(source or "", filename=filename, mode="exec")
    except SyntaxError as e:
        raise ScriptSyntaxError(f"Syntax error: {e.msg}", line=e.lineno) from None
    validate(tree, reserved=reserved)
    return tree


def validate(tree: ast.AST, *, reserved: Iterable[str] = ()) -> None:
    reserved = frozenset(reserved)
    for node in ast.walk(tree):
        line = getattr(node, "lineno", None)

        if not isinstance(node, _STATEMENTS + _EXPRESSIONS + _OPERATORS):
            raise ScriptSyntaxError(f"'{type(node).__name__}' is not allowed in board scripts", line=line)

        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise ScriptSyntaxError(f"Names starting with '_' are not allowed: {node.id}", line=line)
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise ScriptSyntaxError(f"Attributes starting with '_' are not allowed: {node.attr}", line=line)

        if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store) and node.id in reserved:
            raise ScriptSyntaxError(f"'{node.id}' is provided by the gateway and cannot be reassigned", line=line)

        if isinstance(node, ast.FunctionDef):
            if node.decorator_list:
                raise ScriptSyntaxError("Decorators are not allowed", line=line)
            if node.name in reserved or node.name.startswith("_"):
                raise ScriptSyntaxError(f"Function name '{node.name}' is not allowed", line=line)

        if isinstance(node, ast.arguments):
            if node.vararg or node.kwarg or node.kwonlyargs or node.posonlyargs:
                raise ScriptSyntaxError("Only plain positional parameters are supported", line=line)
            for a in node.args:
                if a.arg in reserved or a.arg.startswith("_"):
                    raise ScriptSyntaxError(f"Parameter name '{a.arg}' is not allowed", line=line)

        if isinstance(node, (ast.Global, ast.Nonlocal)):
            bad = [n for n in node.names if n in reserved]
            if bad:
                raise ScriptSyntaxError(f"'{bad[0]}' is provided by the gateway and cannot be redeclared", line=line)

        if isinstance(node, ast.ExceptHandler) and node.name and (node.name in reserved or node.name.startswith("_")):
            raise ScriptSyntaxError(f"Exception name '{node.name}' is not allowed", line=line)

        if isinstance(node, ast.Call):
            if any(isinstance(a, ast.Starred) for a in node.args) or any(k.arg is None for k in node.keywords):
                raise ScriptSyntaxError("Argument unpacking (*/**) is not allowed", line=line)

        if isinstance(node, ast.Dict) and any(k is None for k in node.keys):
            raise ScriptSyntaxError("Dict unpacking (**) is not allowed", line=line)


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------

class _Signal(BaseException):
    """Interpreter control flow; never catchable by script `except` clauses."""


class _Break(_Signal):
    pass


class _Continue(_Signal):
    pass


class _Return(_Signal):
    def __init__(self, value: Any = None):
        super().__init__()
        self.value = value


class _BudgetSignal(_Signal):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class _Scope:
    __slots__ = ("vars", "parent", "global_names", "nonlocal_names")

    def __init__(self, parent: Optional["_Scope"] = None):
        self.vars: Dict[str, Any] = {}
        self.parent = parent
        self.global_names: set[str] = set()
        self.nonlocal_names: set[str] = set()


class ScriptFunction:
    """A function or lambda defined by a script; callable from gateway code (timers)."""

    def __init__(
        self,
        interp: "Interpreter",
        name: str,
        args: ast.arguments,
        body: Any,
        defaults: Sequence[Any],
        closure: _Scope,
        *,
        is_lambda: bool = False,
    ):
        self._interp = interp
        self.name = name
        self._args = args
        self._body = body
        self._defaults = list(defaults)
        self._closure = closure
        self._is_lambda = is_lambda

    def __repr__(self) -> str:
        return f"<script function {self.name}>"

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._interp.call_function(self, args, kwargs)


class Interpreter:
    """
    Tree-walking executor for a validated script module.

    `names` are the injected capabilities (board, varG, timer primitives...).
    `exports` optionally restricts attribute access per capability object;
    objects declaring a SCRIPT_EXPORTS frozenset are restricted to it.
    """

    def __init__(
        self,
        names: Mapping[str, Any],
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        open_objects: Sequence[type] = (),
        print_fn: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._log = logger or logging.getLogger(__name__)
        self._names = dict(SAFE_BUILTINS)
        self._names["print"] = self._make_print(print_fn)
        self._names.update(names)
        self._reserved = frozenset(names)
        self._open_objects = tuple(open_objects)
        self.max_steps = int(max_steps)
        self.max_depth = int(max_depth)

        self.module = _Scope()
        self.current_line: Optional[int] = None
        self.steps = 0
        self._depth = 0
        self._active = False
        self._handling: List[BaseException] = []

    @property
    def reserved(self) -> frozenset:
        return self._reserved

    def _make_print(self, print_fn: Optional[Callable[[str], None]]) -> Callable[..., None]:
        sink = print_fn or (lambda text: self._log.info("SCRIPT_PRINT %s", text))

        def _print(*args: Any, sep: str = " ", end: str = "") -> None:
            sink(sep.join(str(a) for a in args) + end)

        return _print

    # ---------------- entry points ----------------

    def run(self, tree: ast.Module) -> None:
        """Execute a module at top level (resets the step budget)."""
        self._enter_top()
        self._active = True
        try:
            self._exec_block(tree.body, self.module)
        except _BudgetSignal as s:
            raise ScriptBudgetExceeded(s.message, line=self.current_line) from None
        except (_Break, _Continue):
            raise ScriptExecutionError("'break'/'continue' outside loop", line=self.current_line) from None
        except _Return:
            raise ScriptExecutionError("'return' outside function", line=self.current_line) from None
        finally:
            self._depth = 0
            self._active = False

    def call_function(self, fn: ScriptFunction, args: Sequence[Any], kwargs: Mapping[str, Any]) -> Any:
        # only calls from outside a running script (timers) start a fresh budget
        top = not self._active
        if top:
            self._enter_top()
            self._active = True
        try:
            self._tick(fn._body if fn._is_lambda else fn._body[0])
            return self._invoke(fn, args, kwargs)
        except _BudgetSignal as s:
            if not top:
                raise
            raise ScriptBudgetExceeded(f"{s.message} (in {fn.name})", line=self.current_line) from None
        except Exception as e:
            if not top or isinstance(e, ScriptExecutionError):
                raise
            raise ScriptExecutionError(
                f"{type(e).__name__} in {fn.name}: {e}",
                line=self.current_line,
            ) from e
        finally:
            if top:
                self._active = False
                self._depth = 0

    def _enter_top(self) -> None:
        self.steps = 0
        self._handling.clear()

    # ---------------- bookkeeping ----------------

    def _tick(self, node: ast.AST) -> None:
        self.steps += 1
        line = getattr(node, "lineno", None)
        if line is not None:
            self.current_line = line
        if self.steps > self.max_steps:
            raise _BudgetSignal(f"Script exceeded {self.max_steps} evaluation steps")

    # ---------------- statements ----------------

    def _exec_block(self, body: Sequence[ast.stmt], scope: _Scope) -> None:
        for stmt in body:
            self._exec(stmt, scope)

    def _exec(self, node: ast.stmt, scope: _Scope) -> None:
        self._tick(node)
        method = getattr(self, f"_exec_{type(node).__name__}", None)
        if method is None:
            raise ScriptRuntimeError(f"Unsupported statement {type(node).__name__}")
        method(node, scope)

    def _exec_Expr(self, node: ast.Expr, scope: _Scope) -> None:
        self._eval(node.value, scope)

    def _exec_Pass(self, node: ast.Pass, scope: _Scope) -> None:
        return None

    def _exec_Assign(self, node: ast.Assign, scope: _Scope) -> None:
        value = self._eval(node.value, scope)
        for target in node.targets:
            self._assign(target, value, scope)

    def _exec_AugAssign(self, node: ast.AugAssign, scope: _Scope) -> None:
        current = self._eval(_as_load(node.target), scope)
        value = self._binop(node.op, current, self._eval(node.value, scope))
        self._assign(node.target, value, scope)

    def _exec_If(self, node: ast.If, scope: _Scope) -> None:
        if self._eval(node.test, scope):
            self._exec_block(node.body, scope)
        else:
            self._exec_block(node.orelse, scope)

    def _exec_While(self, node: ast.While, scope: _Scope) -> None:
        while True:
            self._tick(node)
            if not self._eval(node.test, scope):
                break
            try:
                self._exec_block(node.body, scope)
            except _Break:
                return
            except _Continue:
                continue
        self._exec_block(node.orelse, scope)

    def _exec_For(self, node: ast.For, scope: _Scope) -> None:
        for item in self._eval(node.iter, scope):
            self._tick(node)
            self._assign(node.target, item, scope)
            try:
                self._exec_block(node.body, scope)
            except _Break:
                return
            except _Continue:
                continue
        self._exec_block(node.orelse, scope)

    def _exec_Break(self, node: ast.Break, scope: _Scope) -> None:
        raise _Break()

    def _exec_Continue(self, node: ast.Continue, scope: _Scope) -> None:
        raise _Continue()

    def _exec_Return(self, node: ast.Return, scope: _Scope) -> None:
        raise _Return(self._eval(node.value, scope) if node.value is not None else None)

    def _exec_FunctionDef(self, node: ast.FunctionDef, scope: _Scope) -> None:
        defaults = [self._eval(d, scope) for d in node.args.defaults]
        fn = ScriptFunction(self, node.name, node.args, node.body, defaults, scope)
        self._store_name(node.name, fn, scope)

    def _exec_Global(self, node: ast.Global, scope: _Scope) -> None:
        scope.global_names.update(node.names)

    def _exec_Nonlocal(self, node: ast.Nonlocal, scope: _Scope) -> None:
        scope.nonlocal_names.update(node.names)

    def _exec_Raise(self, node: ast.Raise, scope: _Scope) -> None:
        if node.exc is None:
            if not self._handling:
                raise ScriptRuntimeError("No active exception to re-raise")
            raise self._handling[-1]

        exc = self._eval(node.exc, scope)
        if isinstance(exc, type) and exc in SAFE_EXCEPTIONS.values():
            exc = exc()
        if not isinstance(exc, Exception):
            raise ScriptRuntimeError("Scripts can only raise exceptions")
        raise exc

    def _exec_Try(self, node: ast.Try, scope: _Scope) -> None:
        try:
            self._exec_block(node.body, scope)
        except Exception as exc:
            handler = self._match_handler(node.handlers, exc, scope)
            if handler is None:
                raise
            if handler.name:
                self._store_name(handler.name, exc, scope)
            self._handling.append(exc)
            try:
                self._exec_block(handler.body, scope)
            finally:
                self._handling.pop()
        else:
            self._exec_block(node.orelse, scope)
        finally:
            self._exec_block(node.finalbody, scope)

    def _match_handler(self, handlers: Sequence[ast.ExceptHandler], exc: Exception, scope: _Scope):
        for handler in handlers:
            if handler.type is None:
                return handler
            wanted = self._eval(handler.type, scope)
            classes = wanted if isinstance(wanted, tuple) else (wanted,)
            if not all(isinstance(c, type) and issubclass(c, BaseException) for c in classes):
                raise ScriptRuntimeError("except clause must name exception classes")
            if isinstance(exc, classes):
                return handler
        return None

    # ---------------- assignment ----------------

    def _assign(self, target: ast.expr, value: Any, scope: _Scope) -> None:
        if isinstance(target, ast.Name):
            self._store_name(target.id, value, scope)
        elif isinstance(target, (ast.Tuple, ast.List)):
            values = list(value)
            if len(values) != len(target.elts):
                raise ValueError(f"expected {len(target.elts)} values to unpack, got {len(values)}")
            for t, v in zip(target.elts, values):
                self._assign(t, v, scope)
        elif isinstance(target, ast.Attribute):
            obj = self._eval(target.value, scope)
            if not isinstance(obj, self._open_objects):
                raise ScriptRuntimeError(f"Cannot set attribute '{target.attr}' on {type(obj).__name__}")
            setattr(obj, target.attr, value)
        elif isinstance(target, ast.Subscript):
            obj = self._eval(target.value, scope)
            if not isinstance(obj, (list, dict) + self._open_objects):
                raise ScriptRuntimeError(f"Cannot assign items on {type(obj).__name__}")
            obj[self._eval(target.slice, scope)] = value
        else:
            raise ScriptRuntimeError(f"Unsupported assignment target {type(target).__name__}")

    def _store_name(self, name: str, value: Any, scope: _Scope) -> None:
        if name in self._reserved:
            raise ScriptRuntimeError(f"'{name}' is provided by the gateway and cannot be reassigned")
        if name in scope.global_names:
            self.module.vars[name] = value
            return
        if name in scope.nonlocal_names:
            s = scope.parent
            while s is not None and s is not self.module:
                if name in s.vars:
                    s.vars[name] = value
                    return
                s = s.parent
            raise ScriptRuntimeError(f"no binding for nonlocal '{name}' found")
        scope.vars[name] = value

    def _load_name(self, name: str, scope: _Scope) -> Any:
        if name in scope.global_names:
            if name in self.module.vars:
                return self.module.vars[name]
        else:
            s: Optional[_Scope] = scope
            while s is not None:
                if name in s.vars:
                    return s.vars[name]
                s = s.parent
        if name in self._names:
            return self._names[name]
        raise NameError(f"name '{name}' is not defined")

    # ---------------- functions ----------------

    def _invoke(self, fn: ScriptFunction, args: Sequence[Any], kwargs: Mapping[str, Any]) -> Any:
        params = [a.arg for a in fn._args.args]
        if len(args) > len(params):
            raise TypeError(f"{fn.name}() takes {len(params)} positional arguments but {len(args)} were given")

        local = _Scope(parent=fn._closure)
        for name, value in zip(params, args):
            local.vars[name] = value
        for name, value in kwargs.items():
            if name not in params:
                raise TypeError(f"{fn.name}() got an unexpected keyword argument '{name}'")
            if name in local.vars:
                raise TypeError(f"{fn.name}() got multiple values for argument '{name}'")
            local.vars[name] = value

        first_default = len(params) - len(fn._defaults)
        for i, name in enumerate(params):
            if name in local.vars:
                continue
            if i >= first_default:
                local.vars[name] = fn._defaults[i - first_default]
            else:
                raise TypeError(f"{fn.name}() missing required argument '{name}'")

        if self._depth >= self.max_depth:
            raise _BudgetSignal(f"Script exceeded call depth {self.max_depth}")

        self._depth += 1
        try:
            if fn._is_lambda:
                return self._eval(fn._body, local)
            try:
                self._exec_block(fn._body, local)
            except _Return as r:
                return r.value
            except (_Break, _Continue):
                raise ScriptRuntimeError("'break'/'continue' outside loop") from None
            return None
        finally:
            self._depth -= 1

    # ---------------- expressions ----------------

    def _eval(self, node: ast.expr, scope: _Scope) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise ScriptRuntimeError(f"Unsupported expression {type(node).__name__}")
        return method(node, scope)

    def _eval_Constant(self, node: ast.Constant, scope: _Scope) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name, scope: _Scope) -> Any:
        return self._load_name(node.id, scope)

    def _eval_List(self, node: ast.List, scope: _Scope) -> list:
        return [self._eval(e, scope) for e in node.elts]

    def _eval_Tuple(self, node: ast.Tuple, scope: _Scope) -> tuple:
        return tuple(self._eval(e, scope) for e in node.elts)

    def _eval_Set(self, node: ast.Set, scope: _Scope) -> set:
        return {self._eval(e, scope) for e in node.elts}

    def _eval_Dict(self, node: ast.Dict, scope: _Scope) -> dict:
        return {self._eval(k, scope): self._eval(v, scope) for k, v in zip(node.keys, node.values)}

    def _eval_BoolOp(self, node: ast.BoolOp, scope: _Scope) -> Any:
        result: Any = None
        if isinstance(node.op, ast.And):
            for v in node.values:
                result = self._eval(v, scope)
                if not result:
                    return result
            return result
        for v in node.values:
            result = self._eval(v, scope)
            if result:
                return result
        return result

    def _eval_BinOp(self, node: ast.BinOp, scope: _Scope) -> Any:
        return self._binop(node.op, self._eval(node.left, scope), self._eval(node.right, scope))

    def _binop(self, op: ast.operator, left: Any, right: Any) -> Any:
        fn = _BIN_OPS.get(type(op))
        if fn is None:
            raise ScriptRuntimeError(f"Operator {type(op).__name__} is not supported")

        if isinstance(op, ast.Mult):
            for seq, n in ((left, right), (right, left)):
                if isinstance(seq, (str, list, tuple)) and isinstance(n, int) and n * max(1, len(seq)) > MAX_SEQUENCE_REPEAT:
                    raise ScriptRuntimeError("Sequence repetition too large")
        if isinstance(op, (ast.Pow, ast.LShift)) and isinstance(right, int) and right > MAX_INT_EXPONENT:
            raise ScriptRuntimeError("Exponent too large")
        if isinstance(op, ast.Add) and isinstance(left, (str, list, tuple)) and isinstance(right, (str, list, tuple)):
            _check_length(len(left) + len(right))
        if isinstance(op, ast.Mod) and isinstance(left, str):
            for spec in re.findall(r"%[-#0 +]*([0-9.]*)", left):
                _check_format_spec(spec)
        return fn(left, right)

    def _eval_UnaryOp(self, node: ast.UnaryOp, scope: _Scope) -> Any:
        return _UNARY_OPS[type(node.op)](self._eval(node.operand, scope))

    def _eval_Compare(self, node: ast.Compare, scope: _Scope) -> bool:
        left = self._eval(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            right = self._eval(comparator, scope)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp, scope: _Scope) -> Any:
        return self._eval(node.body, scope) if self._eval(node.test, scope) else self._eval(node.orelse, scope)

    def _eval_JoinedStr(self, node: ast.JoinedStr, scope: _Scope) -> str:
        return "".join(str(self._eval(v, scope)) for v in node.values)

    def _eval_FormattedValue(self, node: ast.FormattedValue, scope: _Scope) -> str:
        value = self._eval(node.value, scope)
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion == ord("s"):
            value = str(value)
        elif node.conversion == ord("a"):
            value = ascii(value)
        spec = self._eval(node.format_spec, scope) if node.format_spec is not None else ""
        _check_format_spec(spec)
        return format(value, spec)

    def _eval_Lambda(self, node: ast.Lambda, scope: _Scope) -> ScriptFunction:
        defaults = [self._eval(d, scope) for d in node.args.defaults]
        return ScriptFunction(self, "<lambda>", node.args, node.body, defaults, scope, is_lambda=True)

    def _eval_Subscript(self, node: ast.Subscript, scope: _Scope) -> Any:
        return self._eval(node.value, scope)[self._eval(node.slice, scope)]

    def _eval_Slice(self, node: ast.Slice, scope: _Scope) -> slice:
        return slice(
            self._eval(node.lower, scope) if node.lower is not None else None,
            self._eval(node.upper, scope) if node.upper is not None else None,
            self._eval(node.step, scope) if node.step is not None else None,
        )

    def _eval_Attribute(self, node: ast.Attribute, scope: _Scope) -> Any:
        obj = self._eval(node.value, scope)
        return self.get_attribute(obj, node.attr)

    def get_attribute(self, obj: Any, attr: str) -> Any:
        if attr.startswith("_"):
            raise ScriptRuntimeError(f"Attribute '{attr}' is not accessible")

        if isinstance(obj, self._open_objects):
            return getattr(obj, attr)

        exports = getattr(type(obj), "SCRIPT_EXPORTS", None)
        if isinstance(exports, frozenset):
            if attr not in exports:
                raise ScriptRuntimeError(f"'{attr}' is not available on {type(obj).__name__}")
            return getattr(obj, attr)

        if isinstance(obj, BaseException) and attr == "args":
            return obj.args

        for kind, allowed in ALLOWED_METHODS.items():
            if isinstance(obj, kind) and not isinstance(obj, bool):
                if attr in allowed:
                    wrap = SIZED_METHODS.get(kind, {}).get(attr)
                    return wrap(obj) if wrap is not None else getattr(obj, attr)
                break

        raise ScriptRuntimeError(f"'{attr}' is not available on {type(obj).__name__}")

    def _eval_Call(self, node: ast.Call, scope: _Scope) -> Any:
        self._tick(node)
        fn = self._eval(node.func, scope)
        args = [self._eval(a, scope) for a in node.args]
        kwargs = {k.arg: self._eval(k.value, scope) for k in node.keywords}

        if isinstance(fn, ScriptFunction):
            return self._invoke(fn, args, kwargs)
        if not callable(fn):
            raise TypeError(f"'{type(fn).__name__}' object is not callable")
        return fn(*args, **kwargs)


def _as_load(target: ast.expr) -> ast.expr:
    """Copy of an assignment target usable as a load expression."""
    if isinstance(target, ast.Name):
        return ast.copy_location(ast.Name(id=target.id, ctx=ast.Load()), target)
    if isinstance(target, ast.Attribute):
        return ast.copy_location(ast.Attribute(value=target.value, attr=target.attr, ctx=ast.Load()), target)
    if isinstance(target, ast.Subscript):
        return ast.copy_location(ast.Subscript(value=target.value, slice=target.slice, ctx=ast.Load()), target)
    raise ScriptRuntimeError(f"Unsupported augmented assignment target {type(target).__name__}")
