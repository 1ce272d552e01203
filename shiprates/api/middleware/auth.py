"""Optional API-key auth middleware.

When ``SHIPRATES_API_KEY`` (or ``api.api_key`` in the config) is set,
every non-public request must carry it in the ``X-API-Key`` header.
The key is shared; there is no per-user authorization.
"""

from __future__ import annotations

import hmac
import logging
import os

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from shiprates.errors import RateAnalysisError

logger = logging.getLogger(__name__)

_PUBLIC_PATH_PREFIXES = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
)


def get_expected_api_key(request: Request) -> str:
    """Return configured API key; empty string means auth disabled."""
    env_key = os.environ.get("SHIPRATES_API_KEY", "").strip()
    if env_key:
        return env_key
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None and runtime.config.api.api_key:
        return runtime.config.api.api_key.strip()
    return ""


def should_authenticate(path: str) -> bool:
    """Return True when this path should be protected by API-key auth."""
    return not path.startswith(_PUBLIC_PATH_PREFIXES)


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """FastAPI middleware entrypoint for optional API-key auth."""
    if request.method.upper() == "OPTIONS":
        return await call_next(request)

    expected_key = get_expected_api_key(request)
    if not expected_key or not should_authenticate(request.url.path):
        return await call_next(request)

    provided_key = request.headers.get("X-API-Key", "")
    if not provided_key or not hmac.compare_digest(provided_key, expected_key):
        logger.warning("api_key_rejected path=%s", request.url.path)
        error = RateAnalysisError.from_code("E-5001", action="use the shiprates API")
        return JSONResponse(
            status_code=401,
            content={
                "detail": "Invalid or missing API key",
                "error_code": error.code,
                "remediation": error.remediation,
            },
        )
    return await call_next(request)
