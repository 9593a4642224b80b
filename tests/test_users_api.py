"""
tests/test_users_api.py -- /api/users, /api/register and login/session.

Each test gets a fresh database from the env fixture (see conftest.py for the
seeded population).
"""

from api.errors import CONFLICT_MESSAGES
from auth.dependencies import SELF_DELETE_MESSAGE

PASSWORD = "Passw0rd!"


class TestAuthentication:
    def test_no_session_is_401(self, env):
        resp = env.client.get("/api/users")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_garbage_token_is_401(self, env):
        resp = env.client.get("/api/users", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_login_sets_cookie_and_session(self, env):
        resp = env.client.post("/api/auth/login", json={"email": "agent1@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["email"] == "agent1@example.com"
        assert body["user"]["role"] == "AGENT"
        assert "passwordHash" not in body["user"]
        assert resp.headers["Cache-Control"] == "no-store"
        assert "access_token" in resp.cookies

        session = env.client.get("/api/auth/session")
        assert session.json()["user"]["id"] == env.id("agent1")

        env.client.post("/api/auth/logout")
        env.client.cookies.clear()
        assert env.client.get("/api/auth/session").json() == {"user": None}

    def test_bad_credentials_do_not_say_which(self, env):
        wrong_pass = env.client.post("/api/auth/login", json={"email": "agent1@example.com", "password": "nope-nope"})
        wrong_mail = env.client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})
        assert wrong_pass.status_code == wrong_mail.status_code == 401
        assert wrong_pass.json() == wrong_mail.json()

    def test_deleted_user_token_stops_working(self, env):
        headers = env.auth("client2")
        assert env.client.delete(f"/api/users/{env.id('client2')}", headers=env.auth("admin")).status_code == 200
        assert env.client.get("/api/users", headers=headers).status_code == 401

    def test_docs_require_login(self, env):
        assert env.client.get("/docs").status_code == 401
        assert env.client.get("/docs", headers=env.auth("client1")).status_code == 200


class TestListUsers:
    def test_admin_sees_everyone(self, env):
        body = env.client.get("/api/users", headers=env.auth("admin")).json()
        assert body["total"] == 6

    def test_agent_sees_only_own_clients(self, env):
        body = env.client.get("/api/users", headers=env.auth("agent1")).json()
        ids = {u["id"] for u in body["users"]}
        assert ids == {env.id("client1"), env.id("client2")}

    def test_agent_filtering_by_other_agent_is_403(self, env):
        resp = env.client.get(f"/api/users?agentId={env.id('agent2')}", headers=env.auth("agent1"))
        assert resp.status_code == 403
        assert resp.json() == {"error": "Forbidden"}

    def test_client_sees_self_and_agent(self, env):
        body = env.client.get("/api/users", headers=env.auth("client1")).json()
        assert {u["id"] for u in body["users"]} == {env.id("client1"), env.id("agent1")}

    def test_role_filter_and_paging(self, env):
        body = env.client.get("/api/users?role=CLIENT&limit=2&offset=0", headers=env.auth("admin")).json()
        assert body["total"] == 3
        assert len(body["users"]) == 2
        assert body["limit"] == 2
        assert all(u["role"] == "CLIENT" for u in body["users"])

    def test_limit_is_capped(self, env):
        body = env.client.get("/api/users?limit=10000", headers=env.auth("admin")).json()
        assert body["limit"] == 500


class TestCreateUser:
    def test_agent_created_client_belongs_to_agent(self, env):
        """agentId and role in the body are ignored for agents."""
        resp = env.client.post(
            "/api/users",
            headers=env.auth("agent1"),
            json={
                "name": "New Client",
                "email": "new@example.com",
                "password": "secret1",
                "role": "CLIENT",
                "agentId": env.id("agent2"),
            },
        )
        assert resp.status_code == 201, resp.text
        created = resp.json()
        assert created["agentId"] == env.id("agent1")
        assert created["role"] == "CLIENT"

        listed = env.client.get("/api/users", headers=env.auth("agent1")).json()
        assert created["id"] in {u["id"] for u in listed["users"]}

    def test_agent_cannot_create_agents(self, env):
        resp = env.client.post(
            "/api/users",
            headers=env.auth("agent1"),
            json={"name": "X", "email": "x@example.com", "password": "secret1", "role": "AGENT"},
        )
        assert resp.status_code == 403

    def test_client_cannot_create_users(self, env):
        resp = env.client.post(
            "/api/users",
            headers=env.auth("client1"),
            json={"name": "X", "email": "x@example.com", "password": "secret1"},
        )
        assert resp.status_code == 403

    def test_admin_creates_agent(self, env):
        resp = env.client.post(
            "/api/users",
            headers=env.auth("admin"),
            json={"name": "Agent 3", "email": "agent3@example.com", "password": "secret1", "role": "AGENT"},
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "AGENT"
        assert resp.json()["agentId"] is None

    def test_admin_must_name_a_real_agent(self, env):
        resp = env.client.post(
            "/api/users",
            headers=env.auth("admin"),
            json={"name": "C", "email": "c@example.com", "password": "secret1", "agentId": env.id("client1")},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "הסוכן לא נמצא"}

    def test_password_required_unless_skipped(self, env):
        body = {"name": "C", "email": "c@example.com"}
        missing = env.client.post("/api/users", headers=env.auth("agent1"), json=body)
        assert missing.status_code == 400
        skipped = env.client.post("/api/users", headers=env.auth("agent1"), json={**body, "skipPassword": True})
        assert skipped.status_code == 201

    def test_short_password_is_400(self, env):
        resp = env.client.post(
            "/api/users",
            headers=env.auth("agent1"),
            json={"name": "C", "email": "c@example.com", "password": "123"},
        )
        assert resp.status_code == 400
        assert "6" in resp.json()["error"]

    def test_duplicate_fields_are_named(self, env):
        base = {"name": "Dup", "password": "secret1"}
        cases = [
            ({"email": "client1@example.com"}, "email"),
            ({"email": "d1@example.com", "idNumber": "111111111"}, "id_number"),
            ({"email": "d2@example.com", "phone": "050-1111111"}, "phone"),
        ]
        for extra, field in cases:
            resp = env.client.post("/api/users", headers=env.auth("admin"), json={**base, **extra})
            assert resp.status_code == 400, field
            assert resp.json() == {"error": CONFLICT_MESSAGES[field]}

    def test_invalid_email_is_400(self, env):
        resp = env.client.post(
            "/api/users", headers=env.auth("admin"), json={"name": "C", "email": "not-an-email", "password": "x" * 8}
        )
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("email")

    def test_new_client_activity_is_visible_to_agent(self, env):
        env.client.post(
            "/api/users",
            headers=env.auth("admin"),
            json={"name": "C9", "email": "c9@example.com", "password": "secret1", "agentId": env.id("agent1")},
        )
        feed = env.client.get("/api/activities", headers=env.auth("agent1")).json()
        assert any(a["type"] == "NEW_CLIENT" and a["targetName"] == "C9" for a in feed)
        other = env.client.get("/api/activities", headers=env.auth("agent2")).json()
        assert not any(a["type"] == "NEW_CLIENT" for a in other)


class TestReadUpdateUser:
    def test_missing_user_is_404(self, env):
        resp = env.client.get("/api/users/does-not-exist", headers=env.auth("admin"))
        assert resp.status_code == 404

    def test_other_agents_client_is_403(self, env):
        resp = env.client.get(f"/api/users/{env.id('client3')}", headers=env.auth("agent1"))
        assert resp.status_code == 403

    def test_client_reads_own_agent(self, env):
        resp = env.client.get(f"/api/users/{env.id('agent1')}", headers=env.auth("client1"))
        assert resp.status_code == 200
        assert resp.json()["name"] == "agent1"

    def test_client_updates_self(self, env):
        resp = env.client.put(
            f"/api/users/{env.id('client1')}", headers=env.auth("client1"), json={"name": "Renamed", "phone": ""}
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["phone"] is None

    def test_client_cannot_update_agent(self, env):
        resp = env.client.put(f"/api/users/{env.id('agent1')}", headers=env.auth("client1"), json={"name": "X"})
        assert resp.status_code == 403

    def test_update_conflict_names_field(self, env):
        resp = env.client.put(
            f"/api/users/{env.id('client1')}",
            headers=env.auth("agent1"),
            json={"email": "client2@example.com"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": CONFLICT_MESSAGES["email"]}

    def test_keeping_own_values_is_not_a_conflict(self, env):
        resp = env.client.put(
            f"/api/users/{env.id('client1')}",
            headers=env.auth("client1"),
            json={"email": "client1@example.com", "idNumber": "111111111"},
        )
        assert resp.status_code == 200

    def test_password_change(self, env):
        env.client.put(f"/api/users/{env.id('client1')}", headers=env.auth("client1"), json={"password": "changed!"})
        login = env.client.post("/api/auth/login", json={"email": "client1@example.com", "password": "changed!"})
        assert login.status_code == 200


class TestDeleteUser:
    def test_admin_cannot_delete_self(self, env):
        resp = env.client.delete(f"/api/users/{env.id('admin')}", headers=env.auth("admin"))
        assert resp.status_code == 400
        assert resp.json() == {"error": SELF_DELETE_MESSAGE}

    def test_agent_deletes_own_client_only(self, env):
        assert env.client.delete(f"/api/users/{env.id('client3')}", headers=env.auth("agent1")).status_code == 403
        assert env.client.delete(f"/api/users/{env.id('client1')}", headers=env.auth("agent1")).status_code == 200
        assert env.user_store.get_by_id(env.id("client1")) is None

    def test_client_cannot_delete(self, env):
        resp = env.client.delete(f"/api/users/{env.id('agent1')}", headers=env.auth("client1"))
        assert resp.status_code == 403

    def test_deleting_agent_orphans_clients_and_keeps_documents(self, env):
        folder = env.create_folder("agent1", "client1")
        file = env.upload("agent1", folder["id"])

        resp = env.client.delete(f"/api/users/{env.id('agent1')}", headers=env.auth("admin"))
        assert resp.status_code == 200

        for name in ("client1", "client2"):
            client = env.user_store.get_by_id(env.id(name))
            assert client is not None, f"{name} must survive its agent's deletion"
            assert client.agent_id is None
            assert client.former_agent_name == "agent1"

        kept = env.client.get(f"/api/folders/{folder['id']}", headers=env.auth("admin"))
        assert kept.status_code == 200
        assert kept.json()["userId"] == env.id("client1")
        assert env.client.get(f"/api/files/{file['id']}/download", headers=env.auth("admin")).status_code == 200

        assert env.user_store.get_by_id(env.id("client3")).agent_id == env.id("agent2")


class TestRegister:
    def test_register_creates_client(self, env):
        resp = env.client.post(
            "/api/register",
            json={"name": "Self", "email": "self@example.com", "password": "secret1", "agentId": env.id("agent2")},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "המשתמש נוצר בהצלחה"
        created = env.user_store.get_by_id(body["id"])
        assert created.role.value == "CLIENT"
        assert created.agent_id == env.id("agent2")

    def test_register_rejects_non_agent_owner(self, env):
        resp = env.client.post(
            "/api/register",
            json={"name": "Self", "email": "self@example.com", "password": "secret1", "agentId": env.id("client1")},
        )
        assert resp.status_code == 400

    def test_register_duplicate_email(self, env):
        resp = env.client.post(
            "/api/register", json={"name": "Self", "email": "agent1@example.com", "password": "secret1"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": CONFLICT_MESSAGES["email"]}

    def test_register_short_password(self, env):
        resp = env.client.post("/api/register", json={"name": "Self", "email": "s@example.com", "password": "12"})
        assert resp.status_code == 400

    def test_agent_card_is_public(self, env):
        resp = env.client.get(f"/api/register/agent/{env.id('agent1')}")
        assert resp.status_code == 200
        assert resp.json() == {
            "id": env.id("agent1"),
            "name": "agent1",
            "email": "agent1@example.com",
            "logoUrl": None,
        }

    def test_admin_card_is_available(self, env):
        assert env.client.get(f"/api/register/agent/{env.id('admin')}").status_code == 200

    def test_agent_card_404_for_clients_and_unknown_ids(self, env):
        for agent_id in (env.id("client1"), "missing"):
            resp = env.client.get(f"/api/register/agent/{agent_id}")
            assert resp.status_code == 404
            assert resp.json() == {"error": "הסוכן לא נמצא"}
