"""
Tests for SimWeGo Gateway endpoints
"""
from .conftest import MONTY_PASSWORD, MONTY_USERNAME


class TestGeneral:
    """Test health check and root endpoints"""

    def test_root(self, api):
        response = api.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health_check(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["upstream"] == "reachable"
        assert "timestamp" in data

    def test_health_with_upstream_down(self, api, fake_monty):
        fake_monty.health_status = 503

        data = api.get("/health").json()

        assert data["status"] == "healthy"
        assert data["upstream"] == "unreachable"


class TestClientCreation:
    """Test client registration through the admin API"""

    def test_create_client_success(self, api, admin_headers, fake_monty):
        response = api.post(
            "/admin/clients",
            json={
                "name": "Acme Travel",
                "upstream_username": MONTY_USERNAME,
                "upstream_password": MONTY_PASSWORD,
            },
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Acme Travel"
        assert data["active"] is True
        assert data["api_key"].startswith("swg_")
        assert "upstream_password" not in data
        assert "upstream_password_encrypted" not in data
        assert MONTY_PASSWORD not in response.text
        assert fake_monty.login_calls == 1

    def test_create_seeds_token_cache(self, api, admin_headers, registered_client, fake_monty):
        detail = api.get(f"/admin/clients/{registered_client['id']}", headers=admin_headers).json()

        assert detail["token_status"] == "valid"
        assert detail["agent_id"] == "agent-42"
        assert detail["reseller_id"] == "reseller-7"
        assert fake_monty.login_calls == 1

    def test_create_with_rejected_credentials(self, api, admin_headers):
        response = api.post(
            "/admin/clients",
            json={"name": "Acme", "upstream_username": MONTY_USERNAME, "upstream_password": "wrong"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert api.get("/admin/clients", headers=admin_headers).json()["total"] == 0

    def test_create_with_upstream_down(self, api, admin_headers, fake_monty):
        fake_monty.login_status = 503

        response = api.post(
            "/admin/clients",
            json={"name": "Acme", "upstream_username": MONTY_USERNAME, "upstream_password": MONTY_PASSWORD},
            headers=admin_headers,
        )

        assert response.status_code == 500
        assert response.json()["code"] == "MONTY_AUTH_FAILED"
        assert "upstream internals" not in response.text

    def test_create_validation(self, api, admin_headers):
        response = api.post(
            "/admin/clients",
            json={"name": "", "upstream_username": MONTY_USERNAME},
            headers=admin_headers,
        )

        assert response.status_code == 422


class TestClientManagement:
    """Test admin client management endpoints"""

    def test_list_clients(self, api, admin_headers, registered_client):
        data = api.get("/admin/clients", headers=admin_headers).json()

        assert data["total"] == 1
        assert data["clients"][0]["id"] == registered_client["id"]
        assert "upstream_password_encrypted" not in data["clients"][0]

    def test_list_total_counts_all_clients(self, api, admin_headers, registered_client, fake_monty):
        fake_monty.accounts["other"] = "other-pass"
        api.post(
            "/admin/clients",
            json={"name": "Other", "upstream_username": "other", "upstream_password": "other-pass"},
            headers=admin_headers,
        )

        data = api.get("/admin/clients", params={"limit": 1}, headers=admin_headers).json()

        assert len(data["clients"]) == 1
        assert data["total"] == 2

    def test_get_missing_client(self, api, admin_headers):
        response = api.get("/admin/clients/does-not-exist", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "CLIENT_NOT_FOUND"

    def test_update_name(self, api, admin_headers, registered_client, tenant_headers):
        response = api.put(
            f"/admin/clients/{registered_client['id']}",
            json={"name": "Renamed"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert api.get("/api/v0/session", headers=tenant_headers).json()["name"] == "Renamed"

    def test_update_password_drops_cached_session(self, api, admin_headers, registered_client, fake_monty):
        fake_monty.accounts[MONTY_USERNAME] = "rotated-pass"

        api.put(
            f"/admin/clients/{registered_client['id']}",
            json={"upstream_password": "rotated-pass"},
            headers=admin_headers,
        )
        detail = api.get(f"/admin/clients/{registered_client['id']}", headers=admin_headers).json()

        assert detail["token_status"] == "none"

    def test_deactivate_and_activate(self, api, admin_headers, registered_client, tenant_headers):
        client_id = registered_client["id"]

        response = api.post(f"/admin/clients/{client_id}/deactivate", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["active"] is False
        assert api.get(f"/admin/clients/{client_id}", headers=admin_headers).json()["token_status"] == "none"

        response = api.post(f"/admin/clients/{client_id}/activate", headers=admin_headers)
        assert response.json()["active"] is True
        assert api.get("/api/v0/session", headers=tenant_headers).status_code == 200

    def test_rotate_key(self, api, admin_headers, registered_client, tenant_headers):
        response = api.post(f"/admin/clients/{registered_client['id']}/rotate-key", headers=admin_headers)

        new_key = response.json()["api_key"]
        assert new_key != registered_client["api_key"]
        assert api.get("/api/v0/session", headers=tenant_headers).status_code == 401
        assert api.get("/api/v0/session", headers={"Authorization": f"Bearer {new_key}"}).status_code == 200

    def test_delete_client(self, api, admin_headers, registered_client, tenant_headers):
        client_id = registered_client["id"]

        response = api.delete(f"/admin/clients/{client_id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["deleted_client"] == {"id": client_id, "name": "Acme Travel"}
        assert api.get(f"/admin/clients/{client_id}", headers=admin_headers).status_code == 404
        assert api.get("/api/v0/session", headers=tenant_headers).status_code == 401
        assert api.get("/admin/stats", headers=admin_headers).json()["tokens"]["total"] == 0

    def test_connection_test(self, api, admin_headers, registered_client):
        response = api.post(f"/admin/clients/{registered_client['id']}/test", headers=admin_headers)

        data = response.json()
        assert data["success"] is True
        assert data["agent_id"] == "agent-42"

    def test_connection_test_failure(self, api, admin_headers, registered_client, tenant_headers, fake_monty):
        api.post("/api/v0/Agent/logout", headers=tenant_headers)
        fake_monty.login_status = 500

        response = api.post(f"/admin/clients/{registered_client['id']}/test", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_stats(self, api, admin_headers, registered_client):
        data = api.get("/admin/stats", headers=admin_headers).json()

        assert data["clients"] == 1
        assert data["active_clients"] == 1
        assert data["tokens"] == {"total": 1, "valid": 1, "expired": 0}
        assert data["cleanup"]["is_running"] is False
        assert data["cleanup"]["interval_minutes"] == 60


class TestTenantSession:
    """Test the tenant-facing session lifecycle"""

    def test_session_uses_cached_token(self, api, tenant_headers, fake_monty):
        response = api.get("/api/v0/session", headers=tenant_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["has_upstream_token"] is True
        assert data["active"] is True
        assert 0 < data["time_to_expiry"] <= 3600
        assert fake_monty.login_calls == 1

    def test_logout_forces_new_login(self, api, tenant_headers, fake_monty):
        response = api.post("/api/v0/Agent/logout", headers=tenant_headers)
        assert response.json() == {"success": True, "message": "Logout successful"}

        api.get("/api/v0/session", headers=tenant_headers)

        assert fake_monty.login_calls == 2

    def test_end_to_end_suspension(self, api, admin_headers, fake_monty):
        created = api.post(
            "/admin/clients",
            json={"name": "Acme", "upstream_username": MONTY_USERNAME, "upstream_password": MONTY_PASSWORD},
            headers=admin_headers,
        ).json()
        headers = {"Authorization": f"Bearer {created['api_key']}"}

        assert api.get("/api/v0/session", headers=headers).status_code == 200

        api.post(f"/admin/clients/{created['id']}/deactivate", headers=admin_headers)
        calls_before = len(fake_monty.requests)

        response = api.get("/api/v0/session", headers=headers)

        assert response.status_code == 403
        assert response.json()["code"] == "AUTH_SUSPENDED"
        assert len(fake_monty.requests) == calls_before
