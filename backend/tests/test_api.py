"""HTTP surface tests: routes, status codes and error mapping."""

import base64

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from certvault.api import certificates as certificates_api
from certvault.api import vault as vault_api
from certvault.lifecycle.manager import CertificateLifecycleManager
from certvault.lifecycle.scheduler import RotationScheduler
from certvault.vault.key_vault import KeyVault


@pytest_asyncio.fixture
async def api(tmp_path, fake_generator, ca_client):
    """An app with both routers and core services injected, driven in-process."""
    vault = KeyVault(tmp_path / "keys")
    manager = CertificateLifecycleManager(
        vault=vault,
        generator=fake_generator,
        ca_client=ca_client,
        scheduler=RotationScheduler(time_unit_seconds=1000),
        zone_id="zone-1",
    )
    await manager.start()
    vault_api.set_key_vault(vault)
    certificates_api.set_lifecycle_manager(manager)

    app = FastAPI()
    app.include_router(certificates_api.router)
    app.include_router(vault_api.router)

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client

    await manager.stop()
    certificates_api.set_lifecycle_manager(None)
    vault_api.set_key_vault(None)


async def _issue(api: httpx.AsyncClient, common_name: str = "example.com") -> dict:
    response = await api.post(
        "/api/certificates",
        json={"common_name": common_name, "host_names": [common_name, f"www.{common_name}"]},
    )
    assert response.status_code == 201
    return response.json()


class TestVaultRoutes:
    """Tests for /api/vault."""

    @pytest.mark.asyncio
    async def test_store_get_delete(self, api):
        secret = base64.b64encode(b"\x00\x01token").decode()

        created = await api.post("/api/vault/entries", json={"name": "api-token", "secret_base64": secret})
        assert created.status_code == 201
        assert created.json()["name"] == "api-token"
        assert created.json()["kind"] == "secret"

        fetched = await api.get("/api/vault/entries/api-token")
        assert fetched.status_code == 200
        assert fetched.json()["secret_base64"] == secret

        listed = await api.get("/api/vault/entries")
        assert listed.json()["total"] == 1
        assert "secret_base64" not in listed.json()["items"][0]

        assert (await api.delete("/api/vault/entries/api-token")).status_code == 204
        assert (await api.delete("/api/vault/entries/api-token")).status_code == 404

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, api):
        body = {"name": "dup", "secret_base64": base64.b64encode(b"one").decode()}

        assert (await api.post("/api/vault/entries", json=body)).status_code == 201
        assert (await api.post("/api/vault/entries", json=body)).status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_base64_is_bad_request(self, api):
        response = await api.post("/api/vault/entries", json={"name": "x", "secret_base64": "not base64!"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_name_is_bad_request(self, api):
        body = {"name": "master", "secret_base64": base64.b64encode(b"x").decode()}

        response = await api.post("/api/vault/entries", json=body)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_entry_is_not_found(self, api):
        assert (await api.get("/api/vault/entries/absent")).status_code == 404


class TestCertificateRoutes:
    """Tests for /api/certificates."""

    @pytest.mark.asyncio
    async def test_issue_and_list(self, api):
        issued = await _issue(api)

        assert issued["status"] == "issued"
        assert issued["host_names"] == ["example.com", "www.example.com"]

        listed = await api.get("/api/certificates")
        assert listed.status_code == 200
        assert [c["id"] for c in listed.json()["items"]] == [issued["id"]]

        fetched = await api.get(f"/api/certificates/{issued['id']}")
        assert fetched.json()["id"] == issued["id"]

        entries = (await api.get("/api/vault/entries")).json()["items"]
        assert entries[0]["kind"] == "private_key"

    @pytest.mark.asyncio
    async def test_ca_rejection_is_bad_gateway(self, api, fake_ca):
        fake_ca.reject_create = (1010, "Invalid CSR")

        response = await api.post(
            "/api/certificates", json={"common_name": "example.com", "host_names": ["example.com"]}
        )

        assert response.status_code == 502
        assert response.json()["detail"] == {"code": 1010, "message": "Invalid CSR"}

    @pytest.mark.asyncio
    async def test_toolchain_failure_is_server_error(self, api):
        response = await api.post("/api/certificates", json={"common_name": "example.com"})

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_unknown_certificate_is_bad_gateway(self, api):
        response = await api.get("/api/certificates/missing")

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == 1001

    @pytest.mark.asyncio
    async def test_schedule_and_cancel_rotation(self, api):
        issued = await _issue(api)

        scheduled = await api.put(
            f"/api/certificates/{issued['id']}/rotation", json={"interval_days": 30}
        )
        assert scheduled.status_code == 200
        assert scheduled.json()["certificate_id"] == issued["id"]
        assert scheduled.json()["active"] is True
        assert scheduled.json()["next_run_at"] is not None

        records = (await api.get("/api/certificates/records")).json()
        assert records[0]["state"] == "rotation_scheduled"

        assert (await api.delete(f"/api/certificates/{issued['id']}/rotation")).status_code == 204
        assert (await api.delete(f"/api/certificates/{issued['id']}/rotation")).status_code == 404

    @pytest.mark.asyncio
    async def test_non_positive_interval_is_rejected(self, api):
        issued = await _issue(api)

        response = await api.put(
            f"/api/certificates/{issued['id']}/rotation", json={"interval_days": 0}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_revoke_then_schedule_conflicts(self, api):
        issued = await _issue(api)

        revoked = await api.delete(f"/api/certificates/{issued['id']}")
        assert revoked.status_code == 200
        assert revoked.json()["id"] == issued["id"]
        assert revoked.json()["revoked_at"] is not None

        response = await api.put(
            f"/api/certificates/{issued['id']}/rotation", json={"interval_days": 30}
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_records_include_failures(self, api, fake_ca):
        fake_ca.reject_create = (1010, "Invalid CSR")
        await api.post(
            "/api/certificates", json={"common_name": "example.com", "host_names": ["example.com"]}
        )

        [record] = (await api.get("/api/certificates/records")).json()

        assert record["state"] == "failed"
        assert record["certificate_id"] is None
        assert record["vault_key_name"].startswith("ssl_example.com_")
        assert "RequestRejected" in record["error"]
