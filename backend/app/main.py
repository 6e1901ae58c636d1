"""FastAPI application entrypoints for LS-Web.

Each `/run` request builds a fresh `Interpreter` with its own host: output is
buffered, storage goes to the application database, and drawing lands on a
Pillow-backed surface whose display list and PNG are returned to the caller.
Loops and timers started by the program get `max_run_s` seconds to finish
before the run is stopped. Server-side caps are enforced so clients cannot
override the runtime limits.
"""

import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from .. import db
from ..lsweb.errors import LSWebError
from ..lsweb.host import MAX_OUTPUT_CHARS, BufferSink, Dialogs, Host, ImageSurface, SqliteStorage, load_value
from ..lsweb.interpreter import Interpreter

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="LS-Web API", version="0.1")


def _cap_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Enforce server-side safe caps for runtime tunables.

    The ceilings come from a fresh `Interpreter()`'s defaults and the output
    sink's default cap; the client's requested values are applied up to those
    ceilings.
    """
    defaults = Interpreter()
    safe = {
        "max_call_depth": defaults.max_call_depth,
        "max_output_chars": MAX_OUTPUT_CHARS,
        "max_run_s": defaults.max_run_s,
    }
    if not settings:
        return safe
    caps = {}
    caps["max_call_depth"] = min(int(settings.get("max_call_depth", safe["max_call_depth"])), safe["max_call_depth"])
    caps["max_output_chars"] = min(int(settings.get("max_output_chars", safe["max_output_chars"])), safe["max_output_chars"])
    caps["max_run_s"] = min(float(settings.get("max_run_s", safe["max_run_s"])), safe["max_run_s"])
    return caps


@app.on_event('startup')
def startup():
    """FastAPI startup event: initialize the database schema."""
    db.init_db()


class RunRequest(BaseModel):
    """Pydantic model for the `/run` request body.

    Fields:
        code: LS-Web source text, one statement per line.
        inputs: optional answers for INPUT statements, keyed by variable name.
        settings: optional runtime tunables; will be capped server-side.
        script_id: optional id to associate this run with a saved script.
    """
    code: str
    inputs: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    script_id: Optional[int] = None


@app.post("/run")
async def run_code(req: RunRequest):
    """Execute a program and return its output, drawing and errors.

    Program errors come back in `errors` as a structured dict; anything else
    going wrong is reported as SERVER_ERROR so callers always get the same
    JSON shape.
    """
    start = time.time()
    try:
        capped = _cap_settings(req.settings or {})
        sink = BufferSink(max_chars=capped["max_output_chars"])
        host = Host(output=sink, storage=SqliteStorage(), dialogs=Dialogs(req.inputs))
        it = Interpreter(host)
        it.max_call_depth = capped["max_call_depth"]
        it.max_run_s = capped["max_run_s"]
        surface = ImageSurface()

        errors = None
        try:
            await it.start(req.code, surface)
            await it.join(it.max_run_s)
        except LSWebError as e:
            errors = e.to_dict()
        finally:
            it.stop()
            host.network.close()
        failures = list(it.context.failures) if it.context else []
    except Exception as e:
        logger.exception("run failed")
        return {
            "output": "",
            "warnings": [],
            "drawing": [],
            "image": None,
            "events": [],
            "duration_ms": int((time.time() - start) * 1000),
            "errors": {"code": "SERVER_ERROR", "message": str(e)},
        }

    result = {
        "output": sink.text,
        "warnings": list(sink.warnings),
        "drawing": surface.ops,
        "image": surface.to_data_url(),
        "events": host.audio.events,
        "alerts": host.dialogs.alerts,
        "failures": [
            f.to_dict() if isinstance(f, LSWebError) else {"code": "SERVER_ERROR", "message": str(f)}
            for f in failures
        ],
        "duration_ms": int((time.time() - start) * 1000),
        "errors": errors,
    }

    # persisting is non-fatal; on failure we append a warning
    try:
        db.save_run(
            req.script_id,
            result["duration_ms"],
            errors["code"] if errors else "ok",
            len(result["output"]),
        )
    except Exception as e:
        result["warnings"].append(f"Failed to persist run: {e}")

    return result


class SaveScriptRequest(BaseModel):
    title: str
    code: str


@app.post('/save')
async def save_script(req: SaveScriptRequest):
    try:
        script_id = db.save_script(req.title, req.code)
    except Exception as e:
        return {'error': str(e)}
    return {'script_id': script_id}


@app.get('/scripts')
async def list_scripts():
    return db.list_scripts()


@app.get('/scripts/{script_id}')
async def get_script(script_id: int):
    s = db.get_script(script_id)
    if not s:
        return {'error': 'not found'}
    return s


@app.get('/stats')
async def list_stats(script_id: Optional[int] = None):
    return db.list_runs(script_id)


@app.get('/storage')
async def list_storage():
    return db.storage_keys()


@app.get('/storage/{key}')
async def get_storage(key: str):
    raw = db.storage_get(key)
    if raw is None:
        return {'error': 'not found'}
    return {'key': key, 'value': load_value(raw)}
