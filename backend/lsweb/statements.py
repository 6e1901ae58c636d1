"""Line classification for the LS-Web command grammar.

Each source line is exactly one command. `classify` matches a trimmed line
against `GRAMMAR` in priority order (first match wins, keywords are
case-insensitive) and returns a `Statement` carrying the matched kind and its
named arguments. Structural lines (ELSE, ENDIF and block terminators) are
recognised separately by the scheduler and never reach the classifier.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Tuple

from .errors import UnknownStatement


class StatementKind(enum.Enum):
    SET = "SET"
    LET = "LET"
    CONST = "CONST"
    ALIAS = "ALIAS"
    DECLARE = "DECLARE"
    ARITH = "ARITH"
    RANDOM = "RANDOM"
    MATH = "MATH"
    IF = "IF"
    WHILE = "WHILE"
    FOR = "FOR"
    FUNCTION = "FUNCTION"
    CALL = "CALL"
    RETURN = "RETURN"
    ARRAY = "ARRAY"
    PUSH = "PUSH"
    POP = "POP"
    LEN = "LEN"
    OBJECT = "OBJECT"
    SETFIELD = "SETFIELD"
    GETFIELD = "GETFIELD"
    MERGE = "MERGE"
    PRINT = "PRINT"
    ALERT = "ALERT"
    INPUT = "INPUT"
    TRACE = "TRACE"
    SLEEP = "SLEEP"
    TIME_NOW = "TIME_NOW"
    EVERY = "EVERY"
    CANVAS_SIZE = "CANVAS_SIZE"
    COLOR = "COLOR"
    CLEAR = "CLEAR"
    RECT = "RECT"
    CIRCLE = "CIRCLE"
    LINE = "LINE"
    TEXT = "TEXT"
    FONT = "FONT"
    TICK = "TICK"
    ONKEY = "ONKEY"
    KEY = "KEY"
    STORE = "STORE"
    LOAD = "LOAD"
    DELETE = "DELETE"
    KEYS = "KEYS"
    FETCH = "FETCH"
    FETCHJSON = "FETCHJSON"
    BEEP = "BEEP"
    PLAYAUDIO = "PLAYAUDIO"
    ENTITY_NEW = "ENTITY_NEW"
    COMP_SET = "COMP_SET"
    COMP_GET = "COMP_GET"
    COMP_HAS = "COMP_HAS"
    COMP_DEL = "COMP_DEL"


# Headers whose body is resolved by the block resolver, with their terminator.
BLOCK_TERMINATORS: Dict[StatementKind, str] = {
    StatementKind.WHILE: "ENDWHILE",
    StatementKind.FOR: "ENDFOR",
    StatementKind.FUNCTION: "ENDFN",
    StatementKind.EVERY: "ENDEVERY",
    StatementKind.TICK: "END",
}


def _rule(kind: StatementKind, pattern: str) -> Tuple[StatementKind, Pattern[str]]:
    return kind, re.compile(pattern, re.IGNORECASE)


K = StatementKind

GRAMMAR: List[Tuple[StatementKind, Pattern[str]]] = [
    # declarations & variables
    _rule(K.SET, r"^SET\s+(?P<name>\w+)\s+TO\s+(?P<expr>.+)$"),
    _rule(K.LET, r"^LET\s+(?P<name>\w+)\s*=\s*(?P<expr>.+)$"),
    _rule(K.CONST, r"^CONST\s+(?P<name>\w+)\s*=\s*(?P<expr>.+)$"),
    _rule(K.ALIAS, r"^ALIAS\s+(?P<new>\w+)\s+AS\s+(?P<old>\w+)$"),
    _rule(K.DECLARE, r"^DECLARE\s+(?P<what>STRUCT|ENUM|NAMESPACE)\s+(?P<body>.+)$"),
    # math & random
    _rule(K.ARITH, r"^(?P<op>ADD|SUB|MUL|DIV|MOD)\s+(?P<name>\w+)\s+BY\s+(?P<expr>.+)$"),
    _rule(K.RANDOM, r"^RANDOM\s+BETWEEN\s+(?P<low>.+?)\s+(?P<high>.+?)\s+INTO\s+(?P<name>\w+)$"),
    _rule(K.MATH, r"^MATH\s+(?P<fn>\w+)\s+(?P<expr>.+)\s+INTO\s+(?P<name>\w+)$"),
    # control flow
    _rule(K.IF, r"^IF\s+(?P<cond>.+)\s+THEN$"),
    _rule(K.WHILE, r"^WHILE\s+(?P<cond>.+)$"),
    _rule(K.FOR, r"^FOR\s+(?P<name>\w+)\s+FROM\s+(?P<start>.+)\s+TO\s+(?P<stop>.+)\s+STEP\s+(?P<step>.+)$"),
    # functions
    _rule(K.FUNCTION, r"^FUNCTION\s+(?P<name>\w+)\((?P<params>[^)]*)\)$"),
    _rule(K.CALL, r"^CALL\s+(?P<name>\w+)\((?P<args>.*)\)(?:\s+INTO\s+(?P<dest>\w+))?$"),
    _rule(K.RETURN, r"^RETURN(?:\s+(?P<expr>.+))?$"),
    # arrays & objects
    _rule(K.ARRAY, r"^ARRAY\s+(?P<name>\w+)\s*=\s*(?P<json>\[.*\])$"),
    _rule(K.PUSH, r"^PUSH\s+(?P<expr>.+)\s+INTO\s+(?P<name>\w+)$"),
    _rule(K.POP, r"^POP\s+(?P<src>\w+)\s+INTO\s+(?P<dest>\w+)$"),
    _rule(K.LEN, r"^LEN\s+(?P<src>\w+)\s+INTO\s+(?P<dest>\w+)$"),
    _rule(K.OBJECT, r"^OBJECT\s+(?P<name>\w+)\s*=\s*(?P<json>\{.*\})$"),
    _rule(K.SETFIELD, r"^SETFIELD\s+(?P<obj>\w+)\.(?P<field>\w+)\s+TO\s+(?P<expr>.+)$"),
    _rule(K.GETFIELD, r"^GETFIELD\s+(?P<obj>\w+)\.(?P<field>\w+)\s+INTO\s+(?P<dest>\w+)$"),
    _rule(K.MERGE, r"^MERGE\s+(?P<a>\w+)\s+WITH\s+(?P<b>\w+)\s+INTO\s+(?P<dest>\w+)$"),
    # i/o & debug
    _rule(K.PRINT, r"^PRINT\s+(?P<expr>.+)$"),
    _rule(K.ALERT, r"^ALERT\s+(?P<expr>.+)$"),
    _rule(K.INPUT, r"^INPUT\s+(?P<prompt>.+)\s+INTO\s+(?P<name>\w+)$"),
    _rule(K.TRACE, r"^TRACE\s+(?P<mode>ON|OFF)$"),
    # time
    _rule(K.SLEEP, r"^SLEEP\s+(?P<ms>\d+)$"),
    _rule(K.TIME_NOW, r"^TIME\s+NOW\s+INTO\s+(?P<name>\w+)$"),
    _rule(K.EVERY, r"^EVERY\s+(?P<ms>\d+)$"),
    # drawing
    _rule(K.CANVAS_SIZE, r"^CANVAS\s+SIZE\s+(?P<w>\d+)\s+(?P<h>\d+)$"),
    _rule(K.COLOR, r"^COLOR\s+(?P<expr>.+)$"),
    _rule(K.CLEAR, r"^CLEAR$"),
    _rule(K.RECT, r"^RECT\s+(?P<x>\S+)\s+(?P<y>\S+)\s+(?P<w>\S+)\s+(?P<h>\S+)$"),
    _rule(K.CIRCLE, r"^CIRCLE\s+(?P<x>\S+)\s+(?P<y>\S+)\s+(?P<r>\S+)$"),
    _rule(K.LINE, r"^LINE\s+(?P<x1>\S+)\s+(?P<y1>\S+)\s+(?P<x2>\S+)\s+(?P<y2>\S+)$"),
    _rule(K.TEXT, r"^TEXT\s+(?P<x>\S+)\s+(?P<y>\S+)\s+(?P<expr>.+)$"),
    _rule(K.FONT, r"^FONT\s+(?P<expr>.+)$"),
    _rule(K.TICK, r"^TICK\s+(?P<ms>\d+)$"),
    # keyboard
    _rule(K.ONKEY, r'^ONKEY\s+(?P<phase>DOWN|UP)\s+"(?P<key>[^"]+)"\s+(?P<stmt>.+)$'),
    _rule(K.KEY, r'^KEY\s+"(?P<key>[^"]+)"\s+INTO\s+(?P<name>\w+)$'),
    # storage
    _rule(K.STORE, r'^STORE\s+"(?P<key>[^"]+)"\s+(?P<expr>.+)$'),
    _rule(K.LOAD, r'^LOAD\s+"(?P<key>[^"]+)"\s+INTO\s+(?P<name>\w+)$'),
    _rule(K.DELETE, r'^DELETE\s+"(?P<key>[^"]+)"$'),
    _rule(K.KEYS, r"^KEYS\s+STORAGE\s+INTO\s+(?P<name>\w+)$"),
    # networking
    _rule(K.FETCH, r'^FETCH\s+"(?P<url>[^"]+)"\s+INTO\s+(?P<name>\w+)$'),
    _rule(K.FETCHJSON, r'^FETCHJSON\s+"(?P<url>[^"]+)"\s+INTO\s+(?P<name>\w+)$'),
    # sound
    _rule(K.BEEP, r"^BEEP\s+(?P<freq>\d+)\s+(?P<ms>\d+)$"),
    _rule(K.PLAYAUDIO, r'^PLAYAUDIO\s+"(?P<url>[^"]+)"$'),
    # entities & components
    _rule(K.ENTITY_NEW, r"^ENTITY\s+NEW\s+INTO\s+(?P<name>\w+)$"),
    _rule(K.COMP_SET, r"^COMP\s+SET\s+(?P<ent>\w+)\s+(?P<comp>\w+)\s+(?P<value>.+)$"),
    _rule(K.COMP_GET, r"^COMP\s+GET\s+(?P<ent>\w+)\s+(?P<comp>\w+)\s+INTO\s+(?P<dest>\w+)$"),
    _rule(K.COMP_HAS, r"^COMP\s+HAS\s+(?P<ent>\w+)\s+(?P<comp>\w+)\s+INTO\s+(?P<dest>\w+)$"),
    _rule(K.COMP_DEL, r"^COMP\s+DEL\s+(?P<ent>\w+)\s+(?P<comp>\w+)$"),
]

del K


@dataclass(frozen=True)
class Statement:
    kind: StatementKind
    text: str
    args: Dict[str, str] = field(default_factory=dict)

    def __getitem__(self, key: str) -> str:
        return self.args[key]

    def get(self, key: str, default=None):
        value = self.args.get(key)
        return default if value is None else value


def classify(line: str) -> Statement:
    """Return the first grammar rule matching `line` (already trimmed)."""
    for kind, pattern in GRAMMAR:
        m = pattern.match(line)
        if m:
            args = {k: v.strip() for k, v in m.groupdict().items() if v is not None}
            return Statement(kind, line, args)
    raise UnknownStatement(line)


# --- structural lines handled by the scheduler ------------------------------

_IF_HEADER = dict(GRAMMAR)[StatementKind.IF]
_TERMINATORS = frozenset(BLOCK_TERMINATORS.values())


def is_comment(line: str) -> bool:
    return not line or line.startswith("//") or line.startswith("#")


def is_if_header(line: str) -> bool:
    return _IF_HEADER.match(line) is not None


def is_else(line: str) -> bool:
    return line.upper() == "ELSE"


def is_endif(line: str) -> bool:
    return line.upper() == "ENDIF"


def is_terminator(line: str) -> bool:
    return line.upper() in _TERMINATORS


def split_args(text: str) -> List[str]:
    """Split a comma separated argument list, ignoring commas nested in
    brackets, braces, parentheses or string literals."""
    parts: List[str] = []
    depth = 0
    quote = ""
    current = []
    for ch in text:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = ""
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return [p for p in parts if p]
