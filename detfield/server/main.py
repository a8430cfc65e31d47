"""FastAPI server exposing the field engine over HTTP.

Usage:
    python -m detfield.server.main --port 8765
    python -m detfield.server.main --config configs/default.yaml

The server exposes:
    - GET  /            : Health check
    - POST /initialize  : Reset the field from {dim, seed, alpha}
    - POST /tick        : Advance the field by {n} steps
    - GET  /step        : Current step counter
    - GET  /dim         : Grid side length
    - GET  /hash        : SHA-256 digest of the state (hex)
    - GET  /field/slice : MessagePack excerpt of cells (wrapping at edges)
    - GET  /snapshot    : Canonical state bytes
    - PUT  /snapshot    : Restore state from canonical bytes

Requests are handled by async endpoints that run the engine inline, so at most
one operation touches the field at a time.
"""

from __future__ import annotations

import logging
from typing import Any

import msgpack
import numpy as np
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from detfield.audit.trail import AuditTrail
from detfield.configs import Config
from detfield.engine import Engine
from detfield.errors import FieldError, InvalidDimension, InvalidSnapshot, UninitializedState

logger = logging.getLogger(__name__)

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1

MSGPACK_MEDIA_TYPE = "application/x-msgpack"

# 16M doubles, 128 MiB per response.
MAX_SLICE_CELLS = 1 << 24

ERROR_STATUS: dict[type[FieldError], int] = {
    InvalidDimension: 422,
    UninitializedState: 409,
    InvalidSnapshot: 400,
}


class InitializeRequest(BaseModel):
    dim: int = Field(ge=0, le=U32_MAX)
    seed: int = Field(ge=0, le=U64_MAX)
    alpha: float


class TickRequest(BaseModel):
    n: int = Field(ge=0, le=U32_MAX)


def _pack_array(arr: np.ndarray) -> dict[str, Any]:
    """Pack a numpy array into a dict with shape, dtype, and raw bytes."""
    arr = np.ascontiguousarray(arr.astype("<f8", copy=False))
    return {
        "shape": list(arr.shape),
        "dtype": arr.dtype.str,
        "data": arr.tobytes(),
    }


def unpack_array(packed: dict[str, Any]) -> np.ndarray:
    """Inverse of the packed-array layout used in slice responses."""
    arr = np.frombuffer(packed["data"], dtype=np.dtype(packed["dtype"]))
    return arr.reshape(packed["shape"])


def _status_for(exc: FieldError) -> int:
    for kind, status in ERROR_STATUS.items():
        if isinstance(exc, kind):
            return status
    return 400


def create_app(engine: Engine | None = None, max_slice_cells: int = MAX_SLICE_CELLS) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Engine to serve. A fresh uninitialized one is created if None.
        max_slice_cells: Largest w * h a /field/slice request may ask for.

    Returns:
        Configured FastAPI app; the engine is available as app.state.engine.
    """
    app = FastAPI(
        title="detfield server",
        description="Deterministic scalar field with auditable digests",
        version="0.1.0",
    )
    app.state.engine = engine if engine is not None else Engine()

    def _engine() -> Engine:
        return app.state.engine

    @app.exception_handler(FieldError)
    async def field_error_handler(request: Request, exc: FieldError) -> JSONResponse:
        status = _status_for(exc)
        logger.warning("%s %s -> %d %s: %s", request.method, request.url.path, status, exc.kind, exc)
        return JSONResponse(status_code=status, content={"error": exc.kind, "detail": str(exc)})

    @app.get("/")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "detfield-server"}

    @app.post("/initialize")
    async def initialize(body: InitializeRequest) -> dict[str, Any]:
        """Reset the field; any previous state is discarded."""
        eng = _engine()
        eng.initialize(body.dim, body.seed, body.alpha)
        return {"dim": eng.get_dim(), "step": eng.get_step(), "hash": eng.get_hash().hex()}

    @app.post("/tick")
    async def tick(body: TickRequest) -> dict[str, Any]:
        """Advance the field by n steps."""
        eng = _engine()
        eng.tick(body.n)
        return {"step": eng.get_step(), "hash": eng.get_hash().hex()}

    @app.get("/step")
    async def get_step() -> dict[str, int]:
        return {"step": _engine().get_step()}

    @app.get("/dim")
    async def get_dim() -> dict[str, int]:
        return {"dim": _engine().get_dim()}

    @app.get("/hash")
    async def get_hash() -> dict[str, str]:
        return {"hash": _engine().get_hash().hex()}

    @app.get("/field/slice")
    async def get_field_slice(
        x0: int = Query(0, ge=0, le=U32_MAX),
        y0: int = Query(0, ge=0, le=U32_MAX),
        w: int = Query(1, ge=0, le=U32_MAX),
        h: int = Query(1, ge=0, le=U32_MAX),
    ) -> Response:
        """Return a w x h excerpt as MessagePack.

        Values are sent as raw little-endian doubles so that inf and nan
        survive transport unchanged. Requests above max_slice_cells get 422.
        """
        if w * h > max_slice_cells:
            logger.warning("GET /field/slice -> 422 SliceTooLarge: %dx%d", w, h)
            return JSONResponse(
                status_code=422,
                content={
                    "error": "SliceTooLarge",
                    "detail": f"slice of {w}x{h} cells exceeds the limit of {max_slice_cells}",
                },
            )
        eng = _engine()
        values = eng.get_field_slice(x0, y0, w, h)
        payload = {
            "x0": x0,
            "y0": y0,
            "w": w,
            "h": h,
            "step": eng.get_step(),
            "values": _pack_array(values),
        }
        return Response(
            content=msgpack.packb(payload, use_bin_type=True),
            media_type=MSGPACK_MEDIA_TYPE,
        )

    @app.get("/snapshot")
    async def get_snapshot() -> Response:
        """Canonical state bytes; sha256 of the body equals /hash."""
        return Response(content=_engine().snapshot(), media_type="application/octet-stream")

    @app.put("/snapshot")
    async def put_snapshot(request: Request) -> dict[str, Any]:
        """Replace the state with the canonical bytes in the request body."""
        eng = _engine()
        eng.restore(await request.body())
        return {"dim": eng.get_dim(), "step": eng.get_step(), "hash": eng.get_hash().hex()}

    return app


def start_server(config: Config | None = None) -> None:
    """Start the FastAPI server (blocking).

    When config.log.audit_path is set, every mutating request is recorded and
    the audit trail is written there on shutdown.

    Args:
        config: Server, field and log configuration. Defaults if None.
    """
    import uvicorn

    if config is None:
        config = Config()

    trail = AuditTrail(metadata={"source": "server"}) if config.log.audit_path else None
    app = create_app(Engine(trail=trail), max_slice_cells=config.server.max_slice_cells)

    if trail is not None:
        audit_path = config.log.audit_path

        @app.on_event("shutdown")
        async def save_trail() -> None:
            trail.save(audit_path)

    logger.info("Starting detfield server on %s:%d", config.server.host, config.server.port)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level=config.log.level.lower())


if __name__ == "__main__":
    import argparse

    from detfield.utils.logging import setup_logging

    parser = argparse.ArgumentParser(description="detfield HTTP server")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--host", default=None, help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Port (overrides config)")
    parser.add_argument("--audit", default=None, help="Save an audit trail here on shutdown")
    args = parser.parse_args()

    config = Config.from_yaml(args.config) if args.config else Config()
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.audit is not None:
        config.log.audit_path = args.audit

    setup_logging(config.log.level)
    start_server(config)
