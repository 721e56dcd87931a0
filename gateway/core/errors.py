# gateway/core/errors.py
from __future__ import annotations


class GatewayError(Exception):
    """
    Base class for all expected operational errors in the gateway.
    """

    #: Stable machine-readable identifier (HTTP status mapping, socket replies, CLI exit)
    code: str = "unknown"

    #: HTTP status used when the error reaches the request boundary
    status: int = 500

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def as_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        if self.hint:
            out["hint"] = self.hint
        if self.details:
            out["details"] = dict(self.details)
        return out


# ---------------------------------------------------------------------------
# Configuration / request errors (no transport access yet)
# ---------------------------------------------------------------------------

class ConfigError(GatewayError):
    """Gateway configuration (env, YAML file) is invalid."""
    code = "config_error"


class TransportConfigError(GatewayError):
    """
    Board-type catalog or transport parameters are invalid.

    Examples:
      - unknown board type / connect method pairing
      - unknown driver key
      - missing or mistyped connection parameters
    """
    code = "transport_config_error"
    status = 400


class RequestValidationError(GatewayError):
    """Inbound board payload is malformed (missing id, bad enum values)."""
    code = "invalid_request"
    status = 400


# ---------------------------------------------------------------------------
# Connection lifecycle errors
# ---------------------------------------------------------------------------

class BoardConnectError(GatewayError):
    """
    Transport could not be opened or the board handshake failed.

    `details` always carries the medium and the attempted address.
    """
    code = "board_connect_error"
    status = 502


class BoardNotConnectedError(GatewayError):
    """Operation targets a board id that has no live connection."""
    code = "board_not_connected"
    status = 404


class BoardNotReadyError(GatewayError):
    """Pin I/O was requested before the handshake completed or after close."""
    code = "board_not_ready"
    status = 409


# ---------------------------------------------------------------------------
# Script errors
# ---------------------------------------------------------------------------

class ScriptError(GatewayError):
    """Base class for control script failures."""
    code = "script_error"
    status = 422

    def __init__(self, message: str, *, line: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.line = line
        if line is not None:
            self.details.setdefault("line", line)


class ScriptSyntaxError(ScriptError):
    """Script could not be parsed or uses a construct outside the allowed subset."""
    code = "script_syntax_error"


class ScriptExecutionError(ScriptError):
    """An exception escaped the script while it was running."""
    code = "script_execution_error"


class ScriptBudgetExceeded(ScriptExecutionError):
    """The script exceeded its evaluation step budget (runaway loop)."""
    code = "script_budget_exceeded"
