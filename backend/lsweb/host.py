"""Host capabilities consumed by the LS-Web runtime.

The engine never touches the outside world directly. Drawing, storage,
network, audio, keyboard, dialogs and output all go through the small
objects defined here, bundled per run in a `Host`. Hosts with other needs
(a websocket front-end, a headless test) swap individual capabilities.
"""

import base64
import io
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from PIL import Image, ImageColor, ImageDraw, ImageFont

from .. import db

logger = logging.getLogger(__name__)

# default ceiling on buffered PRINT output, in characters
MAX_OUTPUT_CHARS = 5000
output_logger = logging.getLogger("lsweb.output")


# --- output ------------------------------------------------------------------

class OutputSink:
    def write(self, text: str) -> None:
        raise NotImplementedError


class LogSink(OutputSink):
    """Default sink: PRINT output goes to the `lsweb.output` logger."""

    def write(self, text: str) -> None:
        output_logger.info(text)


class BufferSink(OutputSink):
    """Collects output lines in memory, dropping anything past `max_chars`."""

    def __init__(self, max_chars: int = MAX_OUTPUT_CHARS):
        self.max_chars = max_chars
        self.lines: List[str] = []
        self.warnings: List[str] = []
        self._chars = 0

    def write(self, text: str) -> None:
        if self._chars + len(text) > self.max_chars:
            if not self.warnings:
                self.warnings.append("Output length limit reached")
            return
        self._chars += len(text)
        self.lines.append(text)

    @property
    def text(self) -> str:
        return "\n".join(self.lines) + ("\n" if self.lines else "")


# --- drawing -----------------------------------------------------------------

class Surface:
    """Drawing surface interface. Coordinates are in pixels."""

    def size(self, width: int, height: int) -> None:
        raise NotImplementedError

    def set_color(self, color: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def fill_rect(self, x: float, y: float, w: float, h: float) -> None:
        raise NotImplementedError

    def fill_circle(self, x: float, y: float, r: float) -> None:
        raise NotImplementedError

    def stroke_line(self, x1: float, y1: float, x2: float, y2: float) -> None:
        raise NotImplementedError

    def fill_text(self, text: str, x: float, y: float) -> None:
        raise NotImplementedError

    def set_font(self, font: str) -> None:
        raise NotImplementedError


class RecordingSurface(Surface):
    """Keeps a display list of every drawing operation."""

    def __init__(self, width: int = 300, height: int = 150):
        self.width = width
        self.height = height
        self.color = "#fff"
        self.font = "10px sans-serif"
        self.ops: List[Dict[str, Any]] = []

    def _record(self, op: str, **params) -> None:
        self.ops.append({"op": op, **params})

    def size(self, width, height):
        self.width, self.height = int(width), int(height)
        self._record("size", w=self.width, h=self.height)

    def set_color(self, color):
        self.color = str(color)
        self._record("color", value=self.color)

    def clear(self):
        self._record("clear", color=self.color)

    def fill_rect(self, x, y, w, h):
        self._record("rect", x=x, y=y, w=w, h=h, color=self.color)

    def fill_circle(self, x, y, r):
        self._record("circle", x=x, y=y, r=r, color=self.color)

    def stroke_line(self, x1, y1, x2, y2):
        self._record("line", x1=x1, y1=y1, x2=x2, y2=y2, color=self.color)

    def fill_text(self, text, x, y):
        self._record("text", text=str(text), x=x, y=y, color=self.color, font=self.font)

    def set_font(self, font):
        self.font = str(font)
        self._record("font", value=self.font)


_FONT_PX = re.compile(r"(\d+(?:\.\d+)?)px")


class ImageSurface(RecordingSurface):
    """A raster surface backed by a Pillow image, also keeping the display list."""

    def __init__(self, width: int = 300, height: int = 150):
        super().__init__(width, height)
        self.image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self.image)
        self._font = ImageFont.load_default()
        self._font_px = 10

    def _rgba(self) -> Tuple[int, ...]:
        return ImageColor.getcolor(self.color, "RGBA")

    def size(self, width, height):
        super().size(width, height)
        self.image = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self.image)

    def clear(self):
        super().clear()
        self._draw.rectangle([0, 0, self.width, self.height], fill=self._rgba())

    def fill_rect(self, x, y, w, h):
        super().fill_rect(x, y, w, h)
        if w <= 0 or h <= 0:
            return
        self._draw.rectangle([x, y, x + w, y + h], fill=self._rgba())

    def fill_circle(self, x, y, r):
        super().fill_circle(x, y, r)
        if r <= 0:
            return
        self._draw.ellipse([x - r, y - r, x + r, y + r], fill=self._rgba())

    def stroke_line(self, x1, y1, x2, y2):
        super().stroke_line(x1, y1, x2, y2)
        self._draw.line([x1, y1, x2, y2], fill=self._rgba(), width=1)

    def fill_text(self, text, x, y):
        super().fill_text(text, x, y)
        # canvas text is anchored at the baseline, Pillow draws from the top
        self._draw.text((x, y - self._font_px), str(text), fill=self._rgba(), font=self._font)

    def set_font(self, font):
        super().set_font(font)
        m = _FONT_PX.search(self.font)
        if m:
            self._font_px = math.ceil(float(m.group(1)))
            self._font = ImageFont.load_default(size=self._font_px)

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.image.save(buf, format="PNG")
        return buf.getvalue()

    def to_data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.to_png()).decode("ascii")


# --- storage -----------------------------------------------------------------

class Storage:
    """Persistent key/value capability. Values are opaque serialized strings."""

    def put(self, key: str, value: str) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def list_keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def put(self, key, value):
        self.data[key] = value

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        self.data.pop(key, None)

    def list_keys(self):
        return list(self.data)


class SqliteStorage(Storage):
    """Storage backed by the `Storage` table of the application database."""

    def put(self, key, value):
        db.storage_put(key, value)

    def get(self, key):
        return db.storage_get(key)

    def delete(self, key):
        db.storage_delete(key)

    def list_keys(self):
        return db.storage_keys()


# --- network -----------------------------------------------------------------

class Network:
    """Blocking HTTP fetches; the dispatcher runs them off the event loop.

    The `requests.Session` is opened on the first fetch, so hosts that never
    fetch hold no connection pool.
    """

    def __init__(self, timeout_s: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def fetch_text(self, url: str) -> str:
        resp = self.session.get(url, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.text

    def fetch_json(self, url: str) -> Any:
        resp = self.session.get(url, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.json()


# --- audio -------------------------------------------------------------------

class Audio:
    """Records sound requests. A front-end replays `events` on a real device."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def play_tone(self, freq_hz: float, duration_ms: float) -> None:
        logger.info("beep %s Hz for %s ms", freq_hz, duration_ms)
        self.events.append({"type": "tone", "freq": freq_hz, "ms": duration_ms})

    def play_clip(self, url: str) -> None:
        logger.info("play audio %s", url)
        self.events.append({"type": "clip", "url": url})


# --- keyboard ----------------------------------------------------------------

KeyHandler = Callable[[], None]


class Keyboard:
    """Key state plus edge-triggered handlers.

    Hosts feed key transitions with `press` / `release`; handlers registered
    with `on_key` fire on the matching edge.
    """

    def __init__(self):
        self.state: Dict[str, bool] = {}
        self._handlers: List[Tuple[str, str, KeyHandler]] = []

    def is_key_down(self, key: str) -> bool:
        return bool(self.state.get(key))

    def on_key(self, phase: str, key: str, handler: KeyHandler) -> None:
        self._handlers.append((phase.upper(), key, handler))

    def press(self, key: str) -> None:
        self.state[key] = True
        self._fire("DOWN", key)

    def release(self, key: str) -> None:
        self.state[key] = False
        self._fire("UP", key)

    def _fire(self, phase: str, key: str) -> None:
        for h_phase, h_key, handler in list(self._handlers):
            if h_phase == phase and h_key == key:
                handler()

    def reset(self) -> None:
        self.state.clear()
        self._handlers.clear()

    @property
    def handler_count(self) -> int:
        return len(self._handlers)


# --- dialogs -----------------------------------------------------------------

class Dialogs:
    """ALERT and INPUT. Prompts are answered from `inputs`, keyed by the
    destination variable name; an unanswered prompt yields null."""

    def __init__(self, inputs: Optional[Dict[str, Any]] = None):
        self.inputs: Dict[str, Any] = dict(inputs or {})
        self.alerts: List[str] = []

    def alert(self, text: str) -> None:
        logger.info("alert: %s", text)
        self.alerts.append(text)

    def prompt(self, text: str, name: str) -> Any:
        logger.debug("prompt %r for %s", text, name)
        return self.inputs.get(name)


@dataclass
class Host:
    output: OutputSink = field(default_factory=LogSink)
    storage: Storage = field(default_factory=MemoryStorage)
    network: Network = field(default_factory=Network)
    audio: Audio = field(default_factory=Audio)
    keyboard: Keyboard = field(default_factory=Keyboard)
    dialogs: Dialogs = field(default_factory=Dialogs)


def dump_value(value: Any) -> str:
    return json.dumps(value, default=str)


def load_value(raw: Optional[str]) -> Any:
    """Inverse of `dump_value`; non-JSON content is returned as stored."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw
