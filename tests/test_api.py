import pytest
from datetime import datetime, timezone

import jwt
from httpx import AsyncClient

from jwks_server.core import security
from jwks_server.core.exceptions import TokenExpiredError
from jwks_server.core.keys import KeyManager
from jwks_server.main import create_app


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.mark.asyncio
class TestDiscovery:

    async def test_healthz(self, client: AsyncClient):
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_jwks_returns_only_unexpired_keys(self, client: AsyncClient, app_key_manager: KeyManager):
        response = await client.get("/.well-known/jwks.json")
        assert response.status_code == 200
        data = response.json()
        assert "keys" in data
        assert len(data["keys"]) > 0

        for jwk_dict in data["keys"]:
            assert jwk_dict["kty"] == "RSA"
            assert jwk_dict["use"] == "sig"
            assert jwk_dict["alg"] == "RS256"
            assert jwk_dict["kid"]
            assert jwk_dict["n"] and jwk_dict["e"]
            assert "d" not in jwk_dict

        kids = {jwk_dict["kid"] for jwk_dict in data["keys"]}
        assert kids.isdisjoint(app_key_manager.expired_kids())

    async def test_jwks_alias_matches_well_known(self, client: AsyncClient):
        well_known = await client.get("/.well-known/jwks.json")
        alias = await client.get("/jwks")

        assert alias.status_code == 200
        assert alias.json() == well_known.json()

    @pytest.mark.parametrize("path", ["/.well-known/jwks.json", "/jwks"])
    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "PURGE"])
    async def test_jwks_rejects_other_methods(self, client: AsyncClient, path: str, method: str):
        response = await client.request(method, path)

        assert response.status_code == 405
        assert response.headers["allow"] == "GET"
        assert response.json() == {"error": "method_not_allowed"}

    async def test_jwks_answers_head_like_get(self, client: AsyncClient):
        response = await client.head("/jwks")
        assert response.status_code == 200

        response = await client.head("/.well-known/jwks.json")
        assert response.status_code == 200

    async def test_openapi_documents_error_responses(self, client: AsyncClient):
        schema = (await client.get("/openapi.json")).json()

        assert "ErrorResponse" in schema["components"]["schemas"]
        auth_responses = schema["paths"]["/auth"]["post"]["responses"]
        assert "405" in auth_responses
        assert "500" in auth_responses


@pytest.mark.asyncio
class TestIssueToken:

    async def test_issue_valid_token(self, client: AsyncClient):
        response = await client.post("/auth")
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["expired"] is False

        token = data["token"]
        header = jwt.get_unverified_header(token)
        assert header["kid"] == data["kid"]
        assert header["alg"] == "RS256"

        jwks = (await client.get("/jwks")).json()
        assert data["kid"] in {jwk_dict["kid"] for jwk_dict in jwks["keys"]}

        payload = security.decode_token(token, jwks)
        assert payload["sub"] == "user-123"
        assert payload["name"] == "Demo User"
        assert payload["exp"] > datetime.now(timezone.utc).timestamp()
        assert _parse_iso(data["expiresAt"]).timestamp() == payload["exp"]

    async def test_issue_expired_token(self, client: AsyncClient, app_key_manager: KeyManager):
        response = await client.post("/auth?expired=1")
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["expired"] is True

        token = data["token"]
        kid = data["kid"]
        assert jwt.get_unverified_header(token)["kid"] == kid

        assert kid in app_key_manager.expired_kids()
        jwks = (await client.get("/jwks")).json()
        assert kid not in {jwk_dict["kid"] for jwk_dict in jwks["keys"]}

        record = app_key_manager.get_expired(kid)
        expired_jwks = {"keys": [record.public_jwk]}

        with pytest.raises(TokenExpiredError):
            security.decode_token(token, expired_jwks)

        payload = security.decode_token(token, expired_jwks, verify_exp=False)
        assert payload["exp"] <= datetime.now(timezone.utc).timestamp()
        assert _parse_iso(data["expiresAt"]) <= datetime.now(timezone.utc)

    async def test_expired_flag_without_value(self, client: AsyncClient, app_key_manager: KeyManager):
        response = await client.post("/auth?expired")
        assert response.status_code == 200
        assert response.json()["expired"] is True
        assert response.json()["kid"] in app_key_manager.expired_kids()

    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "PURGE"])
    async def test_auth_rejects_other_methods(self, client: AsyncClient, method: str):
        response = await client.request(method, "/auth")

        assert response.status_code == 405
        assert response.headers["allow"] == "POST"
        assert response.json() == {"error": "method_not_allowed"}

    async def test_auth_rejects_head(self, client: AsyncClient):
        response = await client.head("/auth")

        assert response.status_code == 405
        assert response.headers["allow"] == "POST"

    async def test_signing_failure_returns_internal_error(
        self, client: AsyncClient, app_key_manager: KeyManager, monkeypatch
    ):
        active_before = set(app_key_manager.active)
        expired_before = set(app_key_manager.expired)

        async def broken_signing_key():
            raise RuntimeError("boom")

        monkeypatch.setattr(app_key_manager, "signing_key", broken_signing_key)

        response = await client.post("/auth")
        assert response.status_code == 500
        assert response.json() == {"error": "internal_error"}

        assert set(app_key_manager.active) == active_before
        assert set(app_key_manager.expired) == expired_before

        # The service keeps serving afterwards
        monkeypatch.undo()
        response = await client.post("/auth")
        assert response.status_code == 200


@pytest.mark.asyncio
async def test_startup_failure_aborts_lifespan(test_settings, monkeypatch):
    def broken_generate(key_size):
        raise RuntimeError("rng unavailable")

    monkeypatch.setattr(security, "generate_rsa_keypair", broken_generate)
    app = create_app(test_settings)

    with pytest.raises(RuntimeError, match="rng unavailable"):
        async with app.router.lifespan_context(app):
            pass

    assert app.state.key_manager.running is False


@pytest.mark.asyncio
async def test_each_app_owns_its_key_manager(test_settings):
    first = create_app(test_settings)
    second = create_app(test_settings)

    assert first.state.key_manager is not second.state.key_manager


@pytest.mark.asyncio
async def test_lifespan_stops_key_manager_when_app_crashes(test_settings):
    app = create_app(test_settings)
    key_manager = app.state.key_manager

    with pytest.raises(RuntimeError, match="crash"):
        async with app.router.lifespan_context(app):
            assert key_manager.running is True
            raise RuntimeError("crash")

    assert key_manager.running is False
