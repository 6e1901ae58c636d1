"""Control signals returned by every statement execution."""

import enum
from dataclasses import dataclass
from typing import Any, Optional

from .statements import Statement


class SignalKind(enum.Enum):
    NORMAL = "normal"
    ENTER_BLOCK = "enter_block"
    RETURN = "return"


@dataclass(frozen=True)
class Signal:
    """Tagged result of one statement.

    `ENTER_BLOCK` carries the header statement and whatever the header
    evaluated (condition value, loop bounds, ...) so the scheduler can
    resolve the body extent and start the right driver. `RETURN` carries the
    function result in `value`.
    """

    kind: SignalKind
    value: Any = None
    header: Optional[Statement] = None

    @property
    def is_return(self) -> bool:
        return self.kind is SignalKind.RETURN


NORMAL = Signal(SignalKind.NORMAL)


def enter_block(header: Statement, value: Any = None) -> Signal:
    return Signal(SignalKind.ENTER_BLOCK, value=value, header=header)


def returning(value: Any) -> Signal:
    return Signal(SignalKind.RETURN, value=value)
