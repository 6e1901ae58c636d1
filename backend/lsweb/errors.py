"""Error types raised by the LS-Web runtime.

Every failure the engine can produce derives from `LSWebError`. Each class
carries a stable `code` (the same vocabulary the HTTP layer reports) and,
once the dispatcher has seen it, the raw source line that caused it.
"""

from typing import Any, Dict, Optional


class LSWebError(Exception):
    """Base class for runtime failures.

    Attributes:
        code: short machine-readable category used in API payloads.
        line_text: the trimmed source line being executed, if known.
    """

    code = "RUNTIME_ERROR"

    def __init__(self, message: str, *, line_text: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.line_text = line_text

    def to_dict(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.line_text is not None:
            err["context"] = {"line_text": self.line_text}
        return err


class UndefinedName(LSWebError):
    def __init__(self, name: str, **kwargs):
        super().__init__(f"Undefined: {name}", **kwargs)
        self.name = name


class ConstAssignment(LSWebError):
    def __init__(self, name: str, **kwargs):
        super().__init__(f"Cannot assign CONST {name}", **kwargs)
        self.name = name


class UnknownStatement(LSWebError):
    code = "SYNTAX_ERROR"

    def __init__(self, line: str, **kwargs):
        kwargs.setdefault("line_text", line)
        super().__init__(f"Unknown statement: {line}", **kwargs)


class BadExpression(LSWebError):
    """Raised when the host evaluator rejects or fails on an expression.

    The underlying exception (if any) is chained as `__cause__` by callers
    using `raise BadExpression(...) from exc`.
    """

    def __init__(self, expr: str, reason: str = "", **kwargs):
        message = f"Bad expression: {expr}"
        if reason:
            message += f"\n{reason}"
        super().__init__(message, **kwargs)
        self.expr = expr
        self.reason = reason


class UndefinedFunction(LSWebError):
    def __init__(self, name: str, **kwargs):
        super().__init__(f"No such function: {name}", **kwargs)
        self.name = name


class UnterminatedBlock(LSWebError):
    code = "SYNTAX_ERROR"

    def __init__(self, terminator: str, **kwargs):
        super().__init__(f"Missing {terminator} for block", **kwargs)
        self.terminator = terminator


class MissingSurface(LSWebError):
    def __init__(self, **kwargs):
        super().__init__("No drawing surface attached.", **kwargs)


class CallDepthExceeded(LSWebError):
    def __init__(self, limit: int, **kwargs):
        super().__init__(f"Call depth limit exceeded (max {limit})", **kwargs)
        self.limit = limit


class HostError(LSWebError):
    """A host capability (storage, network, audio...) raised while serving a statement."""

    code = "HOST_ERROR"
