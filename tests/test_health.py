import time
from http import HTTPStatus

import app as app_module


def test_health_ok(app):
    resp = app.test_client().get('/health')
    assert resp.status_code == HTTPStatus.OK
    data = resp.get_json()
    assert data['status'] == 'ok'
    assert data['uptime'] >= 0


def test_health_reports_uptime_since_start(app, monkeypatch):
    monkeypatch.setattr(app_module, 'STARTED_AT', time.monotonic() - 100)
    data = app.test_client().get('/health').get_json()
    assert data['uptime'] >= 100


def test_cors_origins():
    assert app_module.cors_origins('*') == '*'
    assert app_module.cors_origins('') == '*'
    assert app_module.cors_origins('http://a.test, http://b.test') == ['http://a.test', 'http://b.test']


def test_create_app_applies_overrides(app):
    assert app.config['SQLALCHEMY_DATABASE_URI'] == 'sqlite://'
    assert app.config['HISTORY_LIMIT'] == 50
    assert 'socketio' in app.extensions
    assert 'chat_store' in app.extensions
