"""Startup discovery of the service version, schema and gateway endpoints."""

from __future__ import annotations

import random
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from majsoul_api.config import ServiceConfig
from majsoul_api.errors import ConfigFetchError
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

SCHEMA_RESOURCE = "res/proto/liqi.json"
CONFIG_RESOURCE = "config.json"


async def _get_json(client: httpx.AsyncClient, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
    logger.debug("GET %s", url)
    try:
        r = await client.get(url, params=params)
        r.raise_for_status()
        return r.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ConfigFetchError(f"failed to fetch {url}: {exc}") from exc


def _endpoint_urls(config: Dict[str, Any]) -> List[str]:
    """Ordered discovery endpoint URLs from the first ``ip`` entry of config.json."""
    entries = config.get("ip") or []
    if not entries:
        return []
    first = entries[0]
    urls: List[str] = []
    for item in first.get("region_urls") or first.get("gateways") or []:
        url = item.get("url") if isinstance(item, dict) else item
        if url:
            urls.append(str(url))
    return urls


async def fetch_service_config(base_url: str, client: Optional[httpx.AsyncClient] = None) -> ServiceConfig:
    """Fetch version manifest, resource manifest, schema and endpoint list.

    Raises:
        ConfigFetchError: any step failed or returned an unexpected shape.
    """
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=30.0)
    try:
        randv = {"randv": str(random.randint(10 ** 15, 10 ** 16 - 1))}
        manifest = await _get_json(client, urljoin(base_url, "version.json"), randv)
        try:
            version = manifest["version"]
        except (KeyError, TypeError) as exc:
            raise ConfigFetchError("version manifest has no version") from exc

        resversion = await _get_json(client, urljoin(base_url, f"resversion{version}.json"))
        try:
            res = resversion["res"]
            schema_tag = res[SCHEMA_RESOURCE]["prefix"]
            config_tag = res[CONFIG_RESOURCE]["prefix"]
        except (KeyError, TypeError) as exc:
            raise ConfigFetchError(f"resource manifest for {version} lacks {exc}") from exc

        schema = await _get_json(client, urljoin(base_url, f"{schema_tag}/{SCHEMA_RESOURCE}"))
        remote_config = await _get_json(client, urljoin(base_url, f"{config_tag}/{CONFIG_RESOURCE}"))
    finally:
        if owns_client:
            await client.aclose()

    endpoints = _endpoint_urls(remote_config)
    logger.info("service version %s, schema %s, %d discovery endpoints", version, schema_tag, len(endpoints))
    return ServiceConfig(
        version=version,
        schema_version_tag=schema_tag,
        message_schema=schema,
        discovery_endpoints=endpoints,
    )


async def resolve_gateway_url(service_config: ServiceConfig, client: Optional[httpx.AsyncClient] = None) -> str:
    """Ask the discovery endpoints, in order, for a websocket gateway."""
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=10.0)
    try:
        for endpoint in service_config.discovery_endpoints:
            params = {"service": "ws-gateway", "protocol": "ws", "ssl": "true"}
            try:
                listing = await _get_json(client, endpoint, params)
            except ConfigFetchError:
                logger.warning("discovery endpoint %s unavailable", endpoint, exc_info=True)
                continue
            servers = listing.get("servers") if isinstance(listing, dict) else None
            if servers:
                server = str(servers[0])
                if server.startswith(("ws://", "wss://")):
                    return server
                return f"wss://{server}/gateway"
    finally:
        if owns_client:
            await client.aclose()
    raise ConfigFetchError("no discovery endpoint returned a gateway server")
