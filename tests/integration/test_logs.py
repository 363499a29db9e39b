"""Integration tests for request logging and the logs API."""

from datetime import timedelta

from usermgmt.core.timeutil import utcnow
from usermgmt.models import LogEntry, LogLevel
from tests.conftest import auth_headers


def _traffic(client, token):
    headers = auth_headers(token)
    client.get("/api/users", headers=headers)
    client.get("/api/users/9999", headers=headers)
    client.get("/api/health")


class TestRequestLogging:
    def test_requests_are_recorded(self, client, db, admin_token, admin_user):
        _traffic(client, admin_token)

        entries = db.query(LogEntry).order_by(LogEntry.id).all()
        assert [(e.path, e.status_code) for e in entries] == [
            ("/api/users", 200),
            ("/api/users/9999", 404),
        ]
        assert entries[0].user_id == admin_user.id
        assert entries[0].action == "users.read"
        assert LogLevel(entries[0].level) == LogLevel.info
        assert LogLevel(entries[1].level) == LogLevel.warn

    def test_response_headers(self, client):
        response = client.get("/api/health")
        assert response.headers["x-request-id"]
        assert "x-response-time-ms" in response.headers

    def test_anonymous_request_has_no_user(self, client, db):
        client.get("/api/users")
        entry = db.query(LogEntry).one()
        assert entry.user_id is None
        assert entry.status_code == 401


class TestLogsApi:
    def test_list_and_filter(self, client, admin_token):
        _traffic(client, admin_token)
        headers = auth_headers(admin_token)

        body = client.get("/api/logs?sortBy=timestamp", headers=headers).json()
        assert body["pagination"]["total"] == 2

        warn = client.get("/api/logs?level=warn", headers=headers).json()["data"]
        assert [e["path"] for e in warn] == ["/api/users/9999"]

        by_status = client.get("/api/logs?statusCodeFrom=400&statusCodeTo=499", headers=headers).json()
        assert by_status["pagination"]["total"] >= 1
        assert all(400 <= e["status_code"] <= 499 for e in by_status["data"])

    def test_get_single_entry(self, client, db, admin_token):
        _traffic(client, admin_token)
        entry_id = db.query(LogEntry).first().id
        response = client.get(f"/api/logs/{entry_id}", headers=auth_headers(admin_token))
        assert response.status_code == 200
        assert response.json()["id"] == entry_id

    def test_stats(self, client, admin_token):
        _traffic(client, admin_token)
        stats = client.get("/api/logs/stats", headers=auth_headers(admin_token)).json()
        assert stats["total"] == 2
        assert stats["by_level"] == {"info": 1, "warn": 1}
        assert stats["error_count"] == 0

    def test_moderator_reads_but_cannot_purge(self, client, moderator_token):
        headers = auth_headers(moderator_token)
        assert client.get("/api/logs", headers=headers).status_code == 200
        assert client.post("/api/logs/cleanup", headers=headers, json={"days": 1}).status_code == 403

    def test_user_cannot_read(self, client, user_token):
        assert client.get("/api/logs", headers=auth_headers(user_token)).status_code == 403

    def test_cleanup(self, client, db, admin_token):
        db.add(LogEntry(
            action="users.read", resource="users", method="GET", path="/api/users",
            status_code=200, level=LogLevel.info, timestamp=utcnow() - timedelta(days=90),
        ))
        db.commit()

        response = client.post("/api/logs/cleanup", headers=auth_headers(admin_token), json={"days": 30})
        assert response.status_code == 200
        assert response.json() == {"deleted": 1}
