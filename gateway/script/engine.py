# gateway/script/engine.py
from __future__ import annotations

import ast
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gateway.core.errors import ScriptError, ScriptExecutionError
from gateway.core.timers import TimerLedger
from gateway.core.variables import GlobalVariableStore
from gateway.protocol import firmata as fm

from . import interpreter
from .context import HttpDeviceFacade, MqttDeviceFacade, ScriptTimers, VariableProxy, millis, timestamp

VARIABLES_NAME = "varG"

#: names injected into every script; scripts may not rebind them
INJECTED_NAMES = frozenset(
    {
        "board", "device", VARIABLES_NAME, "print", "timestamp", "millis",
        "set_timeout", "set_interval", "clear_timer", "clear_timeout", "clear_interval",
        "setTimeout", "setInterval", "clearTimeout", "clearInterval",
        "HIGH", "LOW", "INPUT", "OUTPUT", "ANALOG", "PWM", "SERVO", "INPUT_PULLUP",
    }
)


@dataclass
class ScriptRun:
    board_id: str
    project_id: str
    steps: int
    duration_s: float
    array_resets: List[str] = field(default_factory=list)
    timers: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "board_id": self.board_id,
            "project_id": self.project_id,
            "steps": self.steps,
            "duration_s": round(self.duration_s, 6),
            "array_resets": list(self.array_resets),
            "timers": dict(self.timers),
        }


def _is_empty_sequence_literal(node: ast.AST) -> bool:
    if isinstance(node, (ast.List, ast.Tuple)) and not node.elts:
        return True
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in ("list", "tuple")
        and not node.args
        and not node.keywords
    )


def _variable_target(node: ast.AST) -> Optional[str]:
    """`varG.X` or `varG["X"]` -> "X"."""
    if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name) and node.value.id == VARIABLES_NAME:
        return node.attr
    if (
        isinstance(node, ast.Subscript)
        and isinstance(node.value, ast.Name)
        and node.value.id == VARIABLES_NAME
        and isinstance(node.slice, ast.Constant)
        and isinstance(node.slice.value, str)
    ):
        return node.slice.value
    return None


class ScriptEngine:
    """
    Runs board control scripts.

    run() always: revokes the board's timers, resets every array variable the
    script re-initializes (`varG.X = []`, together with `X_time`), then
    executes the script with the board's capabilities. A failed run leaves no
    timers behind.
    """

    def __init__(
        self,
        ledger: TimerLedger,
        variables: GlobalVariableStore,
        *,
        max_steps: int = interpreter.DEFAULT_MAX_STEPS,
        max_depth: int = interpreter.DEFAULT_MAX_DEPTH,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.variables = variables
        self.max_steps = int(max_steps)
        self.max_depth = int(max_depth)
        self._log = logger or logging.getLogger(__name__)

    def check(self, source: str) -> ast.Module:
        """Parse and validate without running; raises ScriptSyntaxError."""
        return interpreter.parse(source, reserved=INJECTED_NAMES)

    @staticmethod
    def array_resets(tree: ast.AST) -> List[str]:
        names: List[str] = []
        for node in ast.walk(tree):
            if not isinstance(node, ast.Assign) or not _is_empty_sequence_literal(node.value):
                continue
            for target in node.targets:
                name = _variable_target(target)
                if name is not None and name not in names:
                    names.append(name)
        return names

    def run(
        self,
        board_id: str,
        project_id: str,
        source: str,
        *,
        board: Any = None,
        device: Any = None,
    ) -> ScriptRun:
        board_id = str(board_id)
        project_id = str(project_id)

        self.ledger.revoke_all(board_id)

        try:
            tree = self.check(source)
        except ScriptError as e:
            self._fail(board_id, e)
            raise
        partition = self.variables.ensure_project(project_id)
        resets = self.array_resets(tree)
        if resets:
            partition.reset_arrays(resets)
            self._log.info("SCRIPT_ARRAYS_RESET board=%s project=%s names=%s", board_id, project_id, ",".join(resets))

        interp = interpreter.Interpreter(
            self._names(board_id, partition, board, device),
            max_steps=self.max_steps,
            max_depth=self.max_depth,
            open_objects=(VariableProxy,),
            print_fn=self._print_sink(board_id),
            logger=self._log,
        )

        started = time.perf_counter()
        try:
            interp.run(tree)
        except ScriptError as e:
            self._fail(board_id, e)
            raise
        except Exception as e:
            err = ScriptExecutionError(
                f"{type(e).__name__}: {e}",
                line=interp.current_line,
                details={"board_id": board_id},
            )
            self._fail(board_id, err)
            raise err from e

        result = ScriptRun(
            board_id=board_id,
            project_id=project_id,
            steps=interp.steps,
            duration_s=time.perf_counter() - started,
            array_resets=resets,
            timers=self.ledger.active_count(board_id),
        )
        self._log.info(
            "SCRIPT_RUN board=%s project=%s steps=%d timeouts=%d intervals=%d",
            board_id, project_id, result.steps, result.timers["timeouts"], result.timers["intervals"],
        )
        return result

    # ---------------- internals ----------------

    def _names(self, board_id: str, partition: Any, board: Any, device: Any) -> Dict[str, Any]:
        names: Dict[str, Any] = {
            "board": board,
            "device": self._device_facade(board_id, device),
            VARIABLES_NAME: VariableProxy(partition),
            "timestamp": timestamp,
            "millis": millis,
        }
        names.update(ScriptTimers(board_id, self.ledger).names())
        for const in ("HIGH", "LOW", "INPUT", "OUTPUT", "ANALOG", "PWM", "SERVO", "INPUT_PULLUP"):
            names[const] = getattr(fm, const)
        return names

    def _device_facade(self, board_id: str, device: Any) -> Any:
        if device is None:
            return None
        medium = getattr(device, "medium", None)
        if medium == "http":
            return HttpDeviceFacade(board_id, device, self.ledger, logger=self._log)
        if medium == "mqtt":
            return MqttDeviceFacade(board_id, device, self.ledger, logger=self._log)
        return None

    def _print_sink(self, board_id: str):
        log = logging.getLogger(f"gateway.script.{board_id}")

        def _sink(text: str) -> None:
            log.info("SCRIPT_PRINT board=%s %s", board_id, text)

        return _sink

    def _fail(self, board_id: str, err: ScriptError) -> None:
        revoked = self.ledger.revoke_all(board_id)
        self._log.warning(
            "SCRIPT_FAILED board=%s line=%s code=%s revoked=%d err=%s",
            board_id, err.line, err.code, revoked, err,
        )
