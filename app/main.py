# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""FastAPI application for the green pass validator.

This module defines the validator's HTTP API and manages the lifecycle
of the trust store it validates against.  The application provides:

**HTTP Endpoints**

* ``POST /validate``: accept a :class:`ValidationRequest` body carrying
  a decoded certificate and a validation mode, run signature, revocation
  and rule checks, and return a :class:`ValidationResponse`.

* ``GET /healthz``: lightweight health-check endpoint returning service
  status, trust store readiness and store statistics.  Suitable for
  container orchestrator liveness/readiness probes.

**Trust store**

On startup an :class:`InMemoryTrustStore` is created, set up and, when
``GP_TRUST_SNAPSHOT`` names a file, loaded from that JSON snapshot.  The
store lives on ``app.state.store`` so tests can swap it out.  Without a
snapshot the service starts but answers ``/validate`` with 503 until a
snapshot is loaded.

**Logging**

Structured JSON logging (or plain text with ``GP_LOG_FORMAT=text``) is
configured at startup using the ``GP_LOG_LEVEL`` setting.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import (
    DEFAULT_MODE,
    HTTP_HOST,
    HTTP_PORT,
    LOG_FORMAT,
    LOG_LEVEL,
    TRUST_SNAPSHOT,
)
from app.greenpass.dates import to_iso
from app.greenpass.exceptions import TrustStoreError
from app.greenpass.models import (
    ErrorDetail,
    ValidationMode,
    ValidationRequest,
    ValidationResponse,
)
from app.greenpass.orchestrator import Validator
from app.greenpass.store import InMemoryTrustStore

VERSION = "1.0.0"


# ======================================================================
# Structured JSON logging
# ======================================================================


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Produces one JSON object per log line with fields ``timestamp``,
    ``level``, ``logger``, ``message``, ``module`` and ``funcName``.
    Timestamps are UTC with milliseconds, in the same form as the
    validity windows reported to clients.

    If the log record carries an exception, it is serialized as an
    ``exception`` field containing the formatted traceback string.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": to_iso(datetime.fromtimestamp(record.created, timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _configure_logging() -> None:
    """Configure application logging.

    Sets up the root logger with a single stream handler writing to
    stdout, JSON-formatted unless ``LOG_FORMAT`` is ``text``.  All
    existing handlers are removed first to prevent duplicate output when
    running under uvicorn.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT.lower() == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(_JSONFormatter())

    root.addHandler(handler)
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    # Suppress noisy third-party loggers.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger("greenpass.main")


# ======================================================================
# Application lifespan
# ======================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the trust store and load the startup snapshot.

    A snapshot that fails to load is logged and leaves the store set up
    but not ready; the service still starts so ``/healthz`` can report
    the condition.
    """
    _configure_logging()
    logger.info(
        "Green pass validator starting: HTTP=%s:%d, log_level=%s",
        HTTP_HOST, HTTP_PORT, LOG_LEVEL,
    )

    store = InMemoryTrustStore()
    await store.set_up()
    if TRUST_SNAPSHOT:
        try:
            await store.load_snapshot(TRUST_SNAPSHOT)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load trust snapshot %s: %s", TRUST_SNAPSHOT, exc)
    else:
        logger.warning("GP_TRUST_SNAPSHOT not set; trust store is not ready")

    app.state.store = store

    yield

    logger.info("Green pass validator shutdown complete")


# ======================================================================
# FastAPI application
# ======================================================================

app = FastAPI(
    title="Green Pass Validator",
    description=(
        "Validates decoded EU digital COVID certificates against the "
        "national validity rules, the trusted signer list and the "
        "revocation list."
    ),
    version=VERSION,
    lifespan=lifespan,
)

# Permissive for standalone deployment; restrict origins in production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrustStoreError)
async def trust_store_error_handler(request: Request, exc: TrustStoreError) -> JSONResponse:
    logger.error("Trust store unavailable: %s", exc.code)
    return JSONResponse(
        status_code=503,
        content=ErrorDetail(code=exc.code, message=exc.message).model_dump(),
    )


# ======================================================================
# Endpoints
# ======================================================================


@app.post(
    "/validate",
    response_model=ValidationResponse,
    summary="Validate a decoded certificate",
    description=(
        "Submit a decoded certificate and a validation mode.  Returns the "
        "holder's name and date of birth with the status code, a "
        "justification and the boolean outcome."
    ),
    tags=["validation"],
    responses={503: {"model": ErrorDetail, "description": "Trust store not set up or not ready"}},
)
async def validate_endpoint(body: ValidationRequest, request: Request) -> ValidationResponse:
    """Run the full validation pipeline for one certificate.

    Parameters
    ----------
    body : ValidationRequest
        The certificate and the requested mode.

    Returns
    -------
    ValidationResponse
        The merged signature and rules outcome.
    """
    mode = body.mode or ValidationMode(DEFAULT_MODE)
    validator = Validator(request.app.state.store)
    response = await validator.validate(body.certificate, mode)
    logger.info(
        "POST /validate complete: mode=%s code=%s",
        mode.value,
        response.code.value,
    )
    return response


@app.get(
    "/healthz",
    summary="Health check",
    description="Returns service status and trust store statistics.",
    tags=["health"],
)
async def healthz(request: Request) -> JSONResponse:
    """Health check endpoint.

    ``status`` is ``"ok"`` when the trust store is ready and
    ``"degraded"`` otherwise; the response code is always 200.
    """
    store: InMemoryTrustStore = request.app.state.store
    stats = store.stats()
    return JSONResponse(
        content={
            "status": "ok" if stats["ready"] else "degraded",
            "version": VERSION,
            "store": stats,
        },
        status_code=200,
    )


# ======================================================================
# Application runner (for direct invocation)
# ======================================================================


def main() -> None:
    """Run the validator using uvicorn::

        python -m app.main
    """
    import uvicorn

    _configure_logging()
    logger.info("Starting green pass validator: HTTP=%s:%d", HTTP_HOST, HTTP_PORT)

    uvicorn.run(
        "app.main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
