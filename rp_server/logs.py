"""Staged, JSON-payload log lines for RP flows."""

from __future__ import annotations

import json
import logging

LOGGER = logging.getLogger("rp_server")
SECURITY_LOGGER = logging.getLogger("rp_server.security")

STAGE_LABELS = {
    "register": "Register",
    "authn": "Authenticate",
    "registry": "Registry",
}

EVENT_LABELS = {
    ("register", "options.start"): "Creating Register Options",
    ("register", "options.success"): "Issued Register Options",
    ("register", "verify.start"): "Verifying Registration",
    ("register", "verify.failed"): "Registration Failed",
    ("register", "verify.security"): "Registration Rejected (security)",
    ("register", "verify.error"): "Registration Errored",
    ("register", "verify.success"): "Registration Completed",
    ("authn", "options.start"): "Creating Authentication Options",
    ("authn", "options.success"): "Issued Authentication Options",
    ("authn", "verify.start"): "Verifying Authentication",
    ("authn", "verify.failed"): "Authentication Failed",
    ("authn", "verify.security"): "Authentication Rejected (security)",
    ("authn", "verify.error"): "Authentication Errored",
    ("authn", "verify.success"): "Authentication Completed",
    ("registry", "credential.removed"): "Credential Removed",
    ("registry", "credential.renamed"): "Credential Renamed",
}


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def log_event(
    stage: str,
    event: str,
    req: str,
    level: int = logging.INFO,
    security: bool = False,
    **fields: object,
) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True, default=str)
    message = f"[RP Server: {stage_label}]: {event_label}\n{payload}"
    logger = SECURITY_LOGGER if security else LOGGER
    logger.log(level, message)
