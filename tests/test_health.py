"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and database fields
  - database reports 'ok' when the store answers
  - No API key required, even when the server has one configured
"""

from __future__ import annotations

import api.dependencies
from core.config import Settings


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database state."""
    client, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert data["database"] == "ok"


def test_health_no_key_required(api_client, monkeypatch):
    """Health stays reachable while protected routes answer 401."""
    client, _ = api_client
    monkeypatch.setattr(api.dependencies, "get_settings", lambda: Settings(debug=False, api_key="k" * 32))

    assert client.get("/api/v1/health", headers={}).status_code == 200
    assert client.get("/api/v1/schedule/overdue").status_code == 401
