"""Registry service - HTTP API over the coordination layer."""

import asyncio
import base64
import json
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from src.coordination import (
    ChangeEvent,
    KeyConflict,
    KeyNotFound,
    Registry,
    StoreError,
)

from .config import Settings

logger = structlog.get_logger()
settings = Settings()


class RegistrationRequest(BaseModel):
    """Body of a registration request."""
    file_path: str


def configure_logging(log_level: str) -> None:
    """Filter structlog output below log_level."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - connect the store, release it on shutdown."""
    configure_logging(settings.log_level)
    logger.info("Starting registry service", endpoints=settings.store_endpoints)

    app.state.registry = await Registry.connect(settings)

    yield

    logger.info("Shutting down registry service")
    await app.state.registry.close()


app = FastAPI(
    title="Config Registry",
    description="Unique registrations and watched configuration over a shared store",
    version="0.1.0",
    lifespan=lifespan,
)


def store_unavailable(e: StoreError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Store unavailable: {e}")


def encode_event(event: ChangeEvent) -> str:
    """One NDJSON line per change event."""
    body: dict[str, str] = {"type": event.type.value}
    if event.value is not None:
        body["value"] = base64.b64encode(event.value).decode()
    return json.dumps(body) + "\n"


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "config-registry"}


@app.get("/registrations")
async def list_registrations(request: Request):
    """List registered keys."""
    registry: Registry = request.app.state.registry
    try:
        keys = await registry.list_registered_keys()
    except StoreError as e:
        raise store_unavailable(e)
    return {"keys": keys}


@app.put("/registrations/{key:path}", status_code=201)
async def register(key: str, body: RegistrationRequest, request: Request):
    """Register key. Fails if it is already registered."""
    registry: Registry = request.app.state.registry
    try:
        await registry.register(key, body.file_path)
    except KeyConflict:
        raise HTTPException(status_code=409, detail=f"Key {key} is registered")
    except StoreError as e:
        raise store_unavailable(e)
    return {"key": key, "file_path": body.file_path}


@app.get("/registrations/{key:path}")
async def get_registration(key: str, request: Request):
    """Get the file path registered for key."""
    registry: Registry = request.app.state.registry
    try:
        file_path = await registry.get_registration(key)
    except KeyNotFound:
        raise HTTPException(status_code=404, detail="Registration not found")
    except StoreError as e:
        raise store_unavailable(e)
    return {"key": key, "file_path": file_path}


@app.delete("/registrations/{key:path}")
async def unregister(key: str, request: Request):
    """Unregister key. Unknown keys are fine."""
    registry: Registry = request.app.state.registry
    try:
        await registry.unregister(key)
    except StoreError as e:
        raise store_unavailable(e)
    return {"status": "unregistered", "key": key}


@app.get("/config/{key:path}")
async def get_config(key: str, request: Request):
    """Raw configuration payload for key."""
    registry: Registry = request.app.state.registry
    try:
        value = await registry.get_config(key)
    except KeyNotFound:
        raise HTTPException(status_code=404, detail="Config not found")
    except StoreError as e:
        raise store_unavailable(e)
    return Response(content=value, media_type="application/octet-stream")


@app.get("/watch/{key:path}")
async def watch_config(key: str, request: Request):
    """Stream configuration changes for key as NDJSON."""
    registry: Registry = request.app.state.registry
    cancel = asyncio.Event()
    try:
        stream = await registry.watch(key, cancel)
    except StoreError as e:
        raise store_unavailable(e)

    async def events():
        async with stream:
            try:
                async for event in stream:
                    yield encode_event(event)
            except StoreError as e:
                logger.warning("Watch ended by store failure", key=key, error=str(e))
                yield json.dumps({"type": "error", "detail": str(e)}) + "\n"
            finally:
                cancel.set()

    return StreamingResponse(events(), media_type="application/x-ndjson")


def cli():
    """CLI entry point."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    cli()
