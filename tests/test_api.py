"""End-to-end API tests over the ASGI app."""

import pytest
from httpx import AsyncClient

from shortener.dependencies import ServiceManager
from shortener.exceptions import CodeSpaceExhaustedError, TransientBackendError

ORIGIN = "https://www.google.com"


async def _shorten(client: AsyncClient, headers: dict[str, str], url: str = ORIGIN) -> str:
    response = await client.post("/api/shortener/", json={"url": url}, headers=headers)
    assert response.status_code == 200
    return response.json()["url"]


@pytest.mark.asyncio
async def test_full_lifecycle(client: AsyncClient, manager: ServiceManager, owner_headers: dict[str, str]) -> None:
    code = await _shorten(client, owner_headers)
    assert len(code) == manager.settings.SHORT_CODE_LENGTH

    response = await client.get(f"/api/shortener/r/{code}")
    assert response.status_code == 307
    assert response.headers["location"] == ORIGIN

    await manager.aggregator.flush()

    response = await client.get("/api/user/url/list", headers=owner_headers)
    assert response.status_code == 200
    urls = response.json()["urls"]
    assert len(urls) == 1
    assert urls[0]["code"] == code
    assert urls[0]["originURL"] == ORIGIN
    assert urls[0]["hits"] == 1
    assert "createdAt" in urls[0]

    response = await client.delete(f"/api/user/url/r/{code}", headers=owner_headers)
    assert response.status_code == 200
    assert response.json() == {"code": code}

    response = await client.get(f"/api/shortener/r/{code}")
    assert response.status_code == 404

    response = await client.get("/api/user/url/list", headers=owner_headers)
    assert response.json() == {"urls": []}


@pytest.mark.asyncio
async def test_hits_accumulate_across_redirects(
    client: AsyncClient, manager: ServiceManager, owner_headers: dict[str, str]
) -> None:
    code = await _shorten(client, owner_headers)
    for _ in range(4):
        response = await client.get(f"/api/shortener/r/{code}")
        assert response.status_code == 307

    await manager.aggregator.flush()

    response = await client.get("/api/user/url/list", headers=owner_headers)
    assert response.json()["urls"][0]["hits"] == 4


class TestCreateEndpoint:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "not-a-url", "ftp://example.com/file", "/relative"])
    async def test_invalid_url(self, client: AsyncClient, owner_headers: dict[str, str], url: str) -> None:
        response = await client.post("/api/shortener/", json={"url": url}, headers=owner_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_url_field(self, client: AsyncClient, owner_headers: dict[str, str]) -> None:
        response = await client.post("/api/shortener/", json={}, headers=owner_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_without_cookie(self, client: AsyncClient) -> None:
        response = await client.post("/api/shortener/", json={"url": ORIGIN})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_with_forged_token(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/shortener/", json={"url": ORIGIN}, headers={"Cookie": "accessToken=not.a.jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_code_space_exhausted(
        self, client: AsyncClient, manager: ServiceManager, owner_headers: dict[str, str], monkeypatch
    ) -> None:
        async def exhausted() -> str:
            raise CodeSpaceExhaustedError("no free short code")

        monkeypatch.setattr(manager.generator, "generate", exhausted)

        response = await client.post("/api/shortener/", json={"url": ORIGIN}, headers=owner_headers)
        assert response.status_code == 500


class TestRedirectEndpoint:
    @pytest.mark.asyncio
    async def test_unknown_code(self, client: AsyncClient) -> None:
        response = await client.get("/api/shortener/r/missing1")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_redirect_needs_no_auth(self, client: AsyncClient, owner_headers: dict[str, str]) -> None:
        code = await _shorten(client, owner_headers)

        response = await client.get(f"/api/shortener/r/{code}")
        assert response.status_code == 307

    @pytest.mark.asyncio
    async def test_store_outage_is_503(
        self, client: AsyncClient, manager: ServiceManager, monkeypatch
    ) -> None:
        async def unavailable(code: str):
            raise TransientBackendError("get_by_code timed out")

        monkeypatch.setattr(manager.store, "get_by_code", unavailable)

        response = await client.get("/api/shortener/r/missing1")
        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"


class TestUserEndpoints:
    @pytest.mark.asyncio
    async def test_list_without_cookie(self, client: AsyncClient) -> None:
        response = await client.get("/api/user/url/list")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_delete_without_cookie(self, client: AsyncClient) -> None:
        response = await client.delete("/api/user/url/r/abc12345")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_owner(
        self, client: AsyncClient, owner_headers: dict[str, str], other_headers: dict[str, str]
    ) -> None:
        await _shorten(client, owner_headers)

        response = await client.get("/api/user/url/list", headers=other_headers)
        assert response.status_code == 200
        assert response.json() == {"urls": []}

    @pytest.mark.asyncio
    async def test_delete_foreign_code_is_404(
        self, client: AsyncClient, owner_headers: dict[str, str], other_headers: dict[str, str]
    ) -> None:
        code = await _shorten(client, owner_headers)

        response = await client.delete(f"/api/user/url/r/{code}", headers=other_headers)
        assert response.status_code == 404

        response = await client.get(f"/api/shortener/r/{code}")
        assert response.status_code == 307

    @pytest.mark.asyncio
    async def test_delete_unknown_code(self, client: AsyncClient, owner_headers: dict[str, str]) -> None:
        response = await client.delete("/api/user/url/r/missing1", headers=owner_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_auth_check(self, client: AsyncClient, owner_headers: dict[str, str]) -> None:
        response = await client.get("/api/user/authCheck", headers=owner_headers)
        assert response.status_code == 200
        assert response.json() == {"id": "user-1"}

    @pytest.mark.asyncio
    async def test_auth_check_rejects_bad_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/user/authCheck", headers={"Cookie": "accessToken=123456"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_auth_check_without_cookie(self, client: AsyncClient) -> None:
        response = await client.get("/api/user/authCheck")
        assert response.status_code == 401
