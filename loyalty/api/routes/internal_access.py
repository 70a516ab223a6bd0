from __future__ import annotations

import structlog
from fastapi import HTTPException, Request

from loyalty.core.config import Settings
from loyalty.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

logger = structlog.get_logger(__name__)

STORAGE_ERROR_CODE = "STORAGE_ERROR"


def assert_internal_access(request: Request, *, settings: Settings, log_event: str) -> None:
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning(log_event, reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(
        request,
        expected_token=settings.internal_api_token,
    ):
        logger.warning(log_event, reason="invalid_credentials", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def raise_for_storage_failure(error_code: str | None) -> None:
    if error_code == STORAGE_ERROR_CODE:
        raise HTTPException(status_code=503, detail={"code": "E_STORAGE_RETRY"})
