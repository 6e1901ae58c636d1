import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional


def _db_path() -> Path:
    """Resolve the database file, honouring LSWEB_DB_PATH (useful for tests).

    Read on every call so tests can point the app at a temporary file after
    this module has been imported.
    """
    return Path(os.environ.get('LSWEB_DB_PATH') or Path(__file__).parent / 'lsweb.db')


def get_conn():
    """Return a new sqlite3 connection configured to return rows as dict-like objects.

    A fresh connection per call keeps this simple; the runtime only touches
    storage a handful of times per run.
    """
    conn = sqlite3.connect(str(_db_path()))
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Ensure the database file and required tables exist. Idempotent."""
    _db_path().parent.mkdir(parents=True, exist_ok=True)
    conn = get_conn()
    cur = conn.cursor()
    cur.execute('''
    CREATE TABLE IF NOT EXISTS Scripts (
      script_id INTEGER PRIMARY KEY,
      title TEXT NOT NULL,
      code_text TEXT NOT NULL,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''')
    cur.execute('''
    CREATE TABLE IF NOT EXISTS Runs (
      run_id INTEGER PRIMARY KEY,
      script_id INTEGER NULL,
      duration_ms INTEGER,
      status TEXT NOT NULL,
      output_chars INTEGER,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''')
    cur.execute('''
    CREATE TABLE IF NOT EXISTS Storage (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL
    )
    ''')
    conn.commit()
    conn.close()


def save_script(title: str, code_text: str) -> int:
    """Persist a script and return its new script_id."""
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'INSERT INTO Scripts (title, code_text) VALUES (?, ?)',
        (title, code_text),
    )
    script_id = cur.lastrowid
    conn.commit()
    conn.close()
    return script_id


def list_scripts() -> List[Dict[str, Any]]:
    """Return saved scripts (id, title, created_at), newest first."""
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'SELECT script_id, title, created_at FROM Scripts '
        'ORDER BY created_at DESC, script_id DESC'
    )
    rows = cur.fetchall()
    conn.close()
    return [dict(r) for r in rows]


def get_script(script_id: int) -> Optional[Dict[str, Any]]:
    """Fetch a single script by id, returning None if not found."""
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'SELECT script_id, title, code_text, created_at FROM Scripts '
        'WHERE script_id = ?',
        (script_id,),
    )
    row = cur.fetchone()
    conn.close()
    return dict(row) if row else None


def save_run(
    script_id: Optional[int],
    duration_ms: Optional[int],
    status: str,
    output_chars: Optional[int] = None,
) -> int:
    """Persist a run row and return its run_id.

    `status` is "ok" or the error code the run ended with. Callers treat a
    failure here as non-fatal.
    """
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'INSERT INTO Runs (script_id, duration_ms, status, output_chars) '
        'VALUES (?, ?, ?, ?)',
        (script_id, duration_ms, status, output_chars),
    )
    run_id = cur.lastrowid
    conn.commit()
    conn.close()
    return run_id


def list_runs(script_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """List run rows, optionally filtering by script_id."""
    conn = get_conn()
    cur = conn.cursor()
    if script_id:
        cur.execute(
            (
                "SELECT run_id, script_id, duration_ms, status, output_chars,"
                " created_at FROM Runs WHERE script_id = ?"
                " ORDER BY created_at DESC, run_id DESC"
            ),
            (script_id,),
        )
    else:
        cur.execute(
            (
                "SELECT run_id, script_id, duration_ms, status, output_chars,"
                " created_at FROM Runs ORDER BY created_at DESC, run_id DESC"
            )
        )
    rows = cur.fetchall()
    conn.close()
    return [dict(r) for r in rows]


# --- key/value storage used by STORE / LOAD / DELETE / KEYS -----------------

def storage_put(key: str, value: str) -> None:
    conn = get_conn()
    conn.execute(
        'INSERT INTO Storage (key, value) VALUES (?, ?) '
        'ON CONFLICT(key) DO UPDATE SET value = excluded.value',
        (key, value),
    )
    conn.commit()
    conn.close()


def storage_get(key: str) -> Optional[str]:
    conn = get_conn()
    row = conn.execute('SELECT value FROM Storage WHERE key = ?', (key,)).fetchone()
    conn.close()
    return row['value'] if row else None


def storage_delete(key: str) -> None:
    conn = get_conn()
    conn.execute('DELETE FROM Storage WHERE key = ?', (key,))
    conn.commit()
    conn.close()


def storage_keys() -> List[str]:
    conn = get_conn()
    rows = conn.execute('SELECT key FROM Storage ORDER BY key').fetchall()
    conn.close()
    return [r['key'] for r in rows]
