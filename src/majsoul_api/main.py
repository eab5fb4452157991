from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from google.protobuf.json_format import ParseError

from majsoul_api import __version__
from majsoul_api.config import ServiceConfig, Settings
from majsoul_api.discovery import fetch_service_config, resolve_gateway_url
from majsoul_api.errors import RecordDecodeError, UpstreamError
from majsoul_api.gateway import ContestGateway, RecordGateway
from majsoul_api.records.resolver import RecordResolver
from majsoul_api.schemas.registry import SchemaRegistry
from majsoul_api.session.manager import SessionManager
from majsoul_api.transport.adapters import create_transport
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

NOT_IMPLEMENTED_ERROR = {"error": "Not implemented."}
MISSING_GAME_UUID_ERROR = {"error": "missing param `game_uuid`"}
# decoded records never change once the game is over
RECORD_CACHE_CONTROL = f"public, max-age={30 * 24 * 60 * 60}"


@dataclass
class Runtime:
    """Everything a running API needs, built once per process."""

    service_config: ServiceConfig
    registry: SchemaRegistry
    session: SessionManager
    contests: ContestGateway
    records: RecordGateway

    @classmethod
    def build(cls, settings: Settings, service_config: ServiceConfig, registry: SchemaRegistry,
              transport, fatal: Optional[Callable[[int], Any]] = None) -> "Runtime":
        session = SessionManager(transport, lambda: settings.login_params(service_config), fatal=fatal)
        resolver = RecordResolver(registry)
        return cls(
            service_config=service_config,
            registry=registry,
            session=session,
            contests=ContestGateway(session),
            records=RecordGateway(session, resolver, service_config.client_version),
        )

    async def start(self) -> None:
        await self.session.start()
        await self.session.await_ready()

    async def close(self) -> None:
        await self.session.close()


async def bootstrap(settings: Settings) -> Runtime:
    """Discover the service and wire the runtime; schema types compile lazily."""
    service_config = await fetch_service_config(settings.base_url)
    registry = SchemaRegistry(service_config.message_schema, package=settings.schema_package)
    url = settings.gateway_url or await resolve_gateway_url(service_config)
    transport = create_transport(settings.transport, url=url, registry=registry, timeout=settings.call_timeout)
    return Runtime.build(settings, service_config, registry, transport)


def usage() -> str:
    return """<h1>Majsoul API</h1><div>
    <pre><code>GET /contests?contest_id={contest_id}</code></pre>
    <pre><code>GET /contests/{unique_id}/records?last_index={last_index}</code></pre>
    <pre><code>GET /records/{game_uuid}</code></pre>
    </div>"""


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


router = APIRouter()


@router.get("/", response_class=HTMLResponse)
async def index():
    return usage()


@router.get("/health")
async def health(runtime: Runtime = Depends(get_runtime)):
    return {"status": "ok", "session": runtime.session.state.value}


@router.get("/contests")
async def get_contest(contest_id: Optional[str] = None, runtime: Runtime = Depends(get_runtime)):
    if not contest_id:
        return NOT_IMPLEMENTED_ERROR
    return await runtime.contests.fetch_customized_contest_by_contest_id(contest_id)


@router.get("/contests/{unique_id}")
async def get_contest_by_unique_id(unique_id: str):
    return NOT_IMPLEMENTED_ERROR


@router.get("/contests/{unique_id}/records")
async def get_contest_records(unique_id: str, last_index: Optional[str] = None,
                              runtime: Runtime = Depends(get_runtime)):
    return await runtime.contests.fetch_customized_contest_game_records(unique_id, last_index)


@router.get("/records")
@router.get("/records/")
async def get_record_without_uuid():
    return JSONResponse(MISSING_GAME_UUID_ERROR, status_code=400)


@router.get("/records/{game_uuid}")
async def get_record(game_uuid: str, runtime: Runtime = Depends(get_runtime)):
    if not game_uuid.strip():
        return JSONResponse(MISSING_GAME_UUID_ERROR, status_code=400)
    log = await runtime.records.fetch_game_record(game_uuid)
    return JSONResponse(log, headers={"Cache-Control": RECORD_CACHE_CONTROL})


async def _upstream_failure(request: Request, exc: Exception):
    logger.error("upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=502)


async def _bad_parameter(request: Request, exc: Exception):
    logger.info("rejected parameters on %s: %s", request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=400)


def create_app(runtime: Optional[Runtime] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API; without a prepared ``runtime`` it is bootstrapped at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or await bootstrap(settings or Settings.from_env())
        app.state.runtime = rt
        await rt.start()
        logger.info("ready: service %s as %s", rt.service_config.version, rt.service_config.client_version)
        try:
            yield
        finally:
            await rt.close()

    app = FastAPI(title="majsoul-api", version=__version__, lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(RecordDecodeError, _upstream_failure)
    app.add_exception_handler(UpstreamError, _upstream_failure)
    app.add_exception_handler(ParseError, _bad_parameter)
    return app


app = create_app()


def main() -> None:
    settings = Settings.from_env()
    logger.info("Serving on http://%s:%s", settings.addr, settings.port)
    uvicorn.run(create_app(settings=settings), host=settings.addr, port=settings.port)


if __name__ == "__main__":
    main()
