import asyncio

import httpx
import pytest

from majsoul_api.config import ServiceConfig
from majsoul_api.discovery import fetch_service_config, resolve_gateway_url
from majsoul_api.errors import ConfigFetchError

BASE_URL = "https://game.example/1/"


def _routes(schema):
    return {
        "/1/version.json": {"version": "0.11.1.w"},
        "/1/resversion0.11.1.w.json": {"res": {
            "res/proto/liqi.json": {"prefix": "v0.11.1.w"},
            "config.json": {"prefix": "v0.10.9.w"},
        }},
        "/1/v0.11.1.w/res/proto/liqi.json": schema,
        "/1/v0.10.9.w/config.json": {"ip": [
            {"name": "player", "region_urls": [
                {"url": "https://route-1.example/api/clientgate/routes"},
                {"url": "https://route-2.example/api/clientgate/routes"},
            ]},
            {"name": "other", "region_urls": [{"url": "https://ignored.example/routes"}]},
        ]},
    }


def _client(routes, seen=None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, json=body)
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_fetch_service_config(schema):
    seen = []

    async def _run():
        async with _client(_routes(schema), seen) as client:
            return await fetch_service_config(BASE_URL, client)

    config = asyncio.run(_run())
    assert config.version == "0.11.1.w"
    assert config.client_version == "web-0.11.1"
    assert config.schema_version_tag == "v0.11.1.w"
    assert config.message_schema == schema
    assert config.discovery_endpoints == [
        "https://route-1.example/api/clientgate/routes",
        "https://route-2.example/api/clientgate/routes",
    ]
    # the version manifest is fetched with a cache buster
    assert "randv" in seen[0].url.params


def test_missing_resource_fails_startup(schema):
    routes = _routes(schema)
    del routes["/1/v0.11.1.w/res/proto/liqi.json"]

    async def _run():
        async with _client(routes) as client:
            await fetch_service_config(BASE_URL, client)

    with pytest.raises(ConfigFetchError):
        asyncio.run(_run())


def test_manifest_without_version(schema):
    routes = _routes(schema)
    routes["/1/version.json"] = {"code": "0.11.1"}

    async def _run():
        async with _client(routes) as client:
            await fetch_service_config(BASE_URL, client)

    with pytest.raises(ConfigFetchError):
        asyncio.run(_run())


def _service_config(endpoints):
    return ServiceConfig(version="0.11.1.w", schema_version_tag="v0.11.1.w",
                         message_schema={}, discovery_endpoints=endpoints)


def test_gateway_skips_unavailable_endpoint():
    seen = []
    routes = {"/second": {"servers": ["gateway.example:443"]}}
    config = _service_config(["https://a.example/first", "https://a.example/second"])

    async def _run():
        async with _client(routes, seen) as client:
            return await resolve_gateway_url(config, client)

    assert asyncio.run(_run()) == "wss://gateway.example:443/gateway"
    assert [r.url.path for r in seen] == ["/first", "/second"]
    assert seen[1].url.params["service"] == "ws-gateway"


def test_gateway_without_servers():
    routes = {"/only": {"servers": []}}

    async def _run():
        async with _client(routes) as client:
            await resolve_gateway_url(_service_config(["https://a.example/only"]), client)

    with pytest.raises(ConfigFetchError):
        asyncio.run(_run())
