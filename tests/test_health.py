"""
tests/test_health.py -- Health endpoints and response-wide middleware.

Covers:
  - GET /api/health: 200, status and version, no auth, no rate limit header
  - GET /api/health/db: database round-trip
  - Security headers on every response
  - Unknown Host headers rejected by TrustedHostMiddleware
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_status_and_version(env):
    """Health endpoint returns 200 with status and version."""
    resp = env.client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_no_auth_required_and_not_limited(env):
    resp = env.client.get("/api/health", headers={})
    assert resp.status_code == 200
    assert "X-RateLimit-Remaining" not in resp.headers


def test_db_health_reports_connected(env):
    data = env.client.get("/api/health/db").json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert data["latencyMs"] >= 0


def test_security_headers_present(env):
    resp = env.client.get("/api/health")
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert "frame-ancestors 'none'" in resp.headers["Content-Security-Policy"]


def test_api_responses_carry_remaining_quota(env):
    resp = env.client.get("/api/users", headers=env.auth("admin"))
    assert int(resp.headers["X-RateLimit-Remaining"]) > 0


def test_unknown_host_rejected(env):
    resp = env.client.get("/api/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400


def test_unknown_route_is_json_404(env):
    resp = env.client.get("/api/nope", headers=env.auth("admin"))
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found"}
