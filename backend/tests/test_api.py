"""API smoke tests using FastAPI TestClient."""

import pytest
from fastapi.testclient import TestClient

from backend import db
from backend.app.main import _cap_settings, app

client = TestClient(app)


@pytest.fixture(autouse=True)
def _isolated_db(tmp_path, monkeypatch):
    # the module-level client never runs the startup hook, so set up the schema here
    monkeypatch.setenv("LSWEB_DB_PATH", str(tmp_path / "lsweb_api_test.db"))
    db.init_db()


def test_ping():
    # Basic run endpoint smoke test
    r = client.post('/run', json={'code': 'PRINT 1', 'inputs': {}})
    assert r.status_code in (200, 400, 422)


def test_run_returns_output_and_shape():
    r = client.post('/run', json={'code': 'SET x TO 10\nADD x BY 5\nSUB x BY 3\nPRINT x'})
    assert r.status_code == 200
    body = r.json()
    for key in ('output', 'warnings', 'drawing', 'image', 'events', 'duration_ms', 'errors'):
        assert key in body
    assert body['output'] == '12\n'
    assert body['errors'] is None


def test_run_reports_structured_errors():
    body = client.post('/run', json={'code': 'PRINT 1\nSET y TO x + 1'}).json()
    assert body['output'] == '1\n'
    assert body['errors']['code'] == 'RUNTIME_ERROR'
    assert body['errors']['context'] == {'line_text': 'SET y TO x + 1'}


def test_run_missing_code_is_rejected():
    r = client.post('/run', json={})
    assert r.status_code == 422


def test_finite_loops_complete_within_run():
    code = 'SET n TO 0\nFOR i FROM 1 TO 3 STEP 1\n  PRINT i\nENDFOR'
    body = client.post('/run', json={'code': code}).json()
    assert body['output'] == '1\n2\n3\n'


def test_output_limit_warns():
    code = 'WHILE true\n  PRINT "abcdefghij"\nENDWHILE'
    body = client.post('/run', json={'code': code, 'settings': {'max_output_chars': 25, 'max_run_s': 0.1}}).json()
    assert body['output'] == 'abcdefghij\nabcdefghij\n'
    assert body['warnings'][0] == 'Output length limit reached'


def test_output_cap_cannot_be_raised_by_client():
    code = 'WHILE true\n  PRINT "' + 'a' * 100 + '"\nENDWHILE'
    body = client.post('/run', json={'code': code, 'settings': {'max_output_chars': 10 ** 9, 'max_run_s': 0.2}}).json()
    # 50 lines of 100 chars fill the 5000 char ceiling
    assert len(body['output']) == 50 * 101
    assert body['warnings'] == ['Output length limit reached']


def test_cap_settings_defaults_and_clamps():
    safe = _cap_settings(None)
    assert safe == {'max_call_depth': 64, 'max_output_chars': 5000, 'max_run_s': 1.5}
    caps = _cap_settings({'max_call_depth': 1000, 'max_output_chars': 10, 'max_run_s': 60})
    assert caps == {'max_call_depth': 64, 'max_output_chars': 10, 'max_run_s': 1.5}
