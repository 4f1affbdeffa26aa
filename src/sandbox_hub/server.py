from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator

import click
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sandbox_core import ConfigError, HubConfig, HubPaths, load_hub_config, resolve_hub_paths
from sandbox_core import logging as core_logging
from sandbox_core import shared as core_shared
from sandbox_core.errors import TypedSandboxError, typed_error_payload
from sandbox_hub.api import register_hub_routes
from sandbox_hub.domains import ThreadDomain
from sandbox_hub.integrations import SpawnFn, spawn_command
from sandbox_hub.runtime.invocation import AgentInvoker
from sandbox_hub.runtime.probe import PROBE_STATUS_HEALTHY, ProbeResult, probe_sandbox
from sandbox_hub.services.chat_service import ChatService, InvokeFn
from sandbox_hub.services.health_service import HealthService, SandboxHealth
from sandbox_hub.services.thread_service import ThreadService
from sandbox_hub.store import ThreadStore


LOGGER = logging.getLogger("sandbox_hub")
LOGGER.addHandler(logging.NullHandler())


def _default_config_file() -> Path:
    return core_shared.default_config_file(core_shared.repo_root(Path(__file__)))


def _configure_hub_logging(level: str) -> None:
    core_logging.configure_structured_logger(LOGGER, level=core_logging.normalize_log_level(level))


def _resolve_hub_log_level(log_level: str | None, config: HubConfig | None) -> str:
    cli_value = str(log_level or "").strip()
    if cli_value:
        return core_logging.normalize_log_level(cli_value)
    config_value = ""
    if config is not None and isinstance(config.logging.values, dict):
        config_value = str(config.logging.values.get("level") or "").strip()
    return core_logging.normalize_log_level(config_value or "info")


def _configure_domain_log_levels(config: HubConfig | None) -> None:
    if config is None or not isinstance(config.logging.values, dict):
        return
    core_logging.configure_domain_log_levels(
        domains=config.logging.values.get("domains"),
        logger_prefix="sandbox_hub",
        normalize_level=core_logging.normalize_log_level,
    )


def _uvicorn_log_level(level: str) -> str:
    normalized = core_logging.normalize_log_level(level)
    if normalized == "debug":
        return "info"
    return normalized


def _core_error_payload(exc: BaseException) -> tuple[int, dict[str, Any]]:
    typed_payload = typed_error_payload(exc)
    if typed_payload is not None:
        status_by_code = {
            "CONFIG_ERROR": 400,
            "SANDBOX_UNAVAILABLE": 503,
            "SANDBOX_AUTH_FAILED": 401,
            "RESUME_FAILED": 409,
            "INVOCATION_TIMEOUT": 504,
            "AGENT_EXIT_ERROR": 502,
        }
        status = status_by_code.get(str(typed_payload.get("error_code") or ""), 500)
        return status, typed_payload
    return 500, {"error_code": "INTERNAL_ERROR", "detail": str(exc)}


def _http_error_code(status_code: int) -> str:
    status = int(status_code or 500)
    if status == 400:
        return "BAD_REQUEST"
    if status == 401:
        return "UNAUTHORIZED"
    if status == 403:
        return "FORBIDDEN"
    if status == 404:
        return "NOT_FOUND"
    if status == 409:
        return "CONFLICT"
    if status == 422:
        return "UNPROCESSABLE_ENTITY"
    return "INTERNAL_ERROR" if status >= 500 else "HTTP_ERROR"


class HubState:
    """Process-wide wiring: storage, sandbox health cache, and services."""

    def __init__(
        self,
        *,
        config: HubConfig,
        paths: HubPaths,
        spawn: SpawnFn = spawn_command,
        invoke: InvokeFn | None = None,
    ) -> None:
        self.config = config
        self.paths = paths
        self._spawn = spawn
        self.thread_store = ThreadStore.from_state_file(paths.state_file)
        self.sandbox_health = SandboxHealth()
        self.invoker = AgentInvoker(sandbox=config.sandbox, spawn=spawn)
        self.thread_service = ThreadService(domain=ThreadDomain(store=self.thread_store))
        self.chat_service = ChatService(threads=self.thread_store, invoke=invoke or self.invoker.stream)
        self.health_service = HealthService(health=self.sandbox_health, probe=self.run_sandbox_probe)

    async def run_sandbox_probe(self) -> ProbeResult:
        return await probe_sandbox(self.config.sandbox, spawn=self._spawn)


def build_hub_app(state: HubState, *, probe_on_startup: bool | None = None) -> FastAPI:
    run_startup_probe = state.config.server.probe_on_startup if probe_on_startup is None else probe_on_startup

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        probe_task: asyncio.Task[ProbeResult] | None = None
        if run_startup_probe:
            probe_task = asyncio.create_task(state.health_service.refresh())
        try:
            yield
        finally:
            if probe_task is not None and not probe_task.done():
                probe_task.cancel()
                await asyncio.gather(probe_task, return_exceptions=True)

    app = FastAPI(lifespan=lifespan)
    app.state.hub_state = state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[state.config.server.web_origin],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(TypedSandboxError)
    async def _handle_typed_sandbox_error(_request: Request, exc: TypedSandboxError) -> JSONResponse:
        status, payload = _core_error_payload(exc)
        return JSONResponse(status_code=status, content=payload)

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=int(exc.status_code or 500),
            content={"error_code": _http_error_code(int(exc.status_code or 500)), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    register_hub_routes(app, state=state, logger=LOGGER)
    return app


@click.command(help="Run the sandbox chat hub.")
@click.option("--config-file", default=str(_default_config_file()), show_default=True, type=click.Path(dir_okay=False, path_type=Path), help="Hub TOML config file.")
@click.option("--data-dir", default=None, type=click.Path(file_okay=False, path_type=Path), help="Directory for thread state. Overrides storage.data_dir.")
@click.option("--host", default=None, help="Bind host. Overrides server.host.")
@click.option("--port", default=None, type=int, help="Bind port. Overrides server.port.")
@click.option("--log-level", default=None, type=click.Choice(["debug", "info", "warning", "error", "critical"], case_sensitive=False), help="Overrides logging.level.")
@click.option("--probe/--no-probe", default=None, help="Probe the sandbox at startup. Overrides server.probe_on_startup.")
@click.option("--check", is_flag=True, default=False, help="Probe the sandbox once, print the result as JSON, and exit.")
@click.option("--reload", is_flag=True, default=False)
def main(
    config_file: Path,
    data_dir: Path | None,
    host: str | None,
    port: int | None,
    log_level: str | None,
    probe: bool | None,
    check: bool,
    reload: bool,
) -> None:
    if not Path(config_file).exists():
        raise click.ClickException(f"Missing config file: {config_file}")
    try:
        config = load_hub_config(config_file)
    except ConfigError as exc:
        click.echo(
            json.dumps(
                {"event": "sandbox_hub_config_load_error", "config_path": str(config_file), "error": str(exc)},
                sort_keys=True,
            ),
            err=True,
        )
        raise click.ClickException(str(exc)) from exc

    normalized_log_level = _resolve_hub_log_level(log_level, config)
    _configure_hub_logging(normalized_log_level)
    _configure_domain_log_levels(config)

    paths = resolve_hub_paths(config.storage.values, data_dir_override=data_dir, config_file=Path(config_file))
    state = HubState(config=config, paths=paths)

    if check:
        result = asyncio.run(state.health_service.refresh())
        click.echo(json.dumps({"sandbox": config.sandbox.name, **result.payload()}, sort_keys=True))
        if result.status != PROBE_STATUS_HEALTHY:
            raise SystemExit(1)
        return

    bind_host = host or config.server.host
    bind_port = port or config.server.port
    LOGGER.info(
        "Starting Sandbox Hub host=%s port=%s sandbox=%s state_file=%s",
        bind_host,
        bind_port,
        config.sandbox.name,
        paths.state_file,
        extra={"component": "startup", "operation": "hub_start", "result": "started"},
    )
    app = build_hub_app(state, probe_on_startup=probe)
    uvicorn.run(app, host=bind_host, port=bind_port, reload=reload, log_level=_uvicorn_log_level(normalized_log_level))


if __name__ == "__main__":
    main()
