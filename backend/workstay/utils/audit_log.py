from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "application.created",
    "application.submitted",
    "application.accepted",
    "application.rejected",
    "application.activated",
    "application.completed",
    "application.cancelled",
    "time_slot.opened",
    "time_slot.updated",
    "time_slot.deleted",
]
AuditInitiator = Literal["user", "host", "system"]

_ACTION_BY_STATUS: dict[str, AuditAction] = {
    "PENDING": "application.submitted",
    "ACCEPTED": "application.accepted",
    "REJECTED": "application.rejected",
    "ACTIVE": "application.activated",
    "COMPLETED": "application.completed",
    "CANCELLED": "application.cancelled",
}

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def action_for_status(status: Any) -> AuditAction:
    return _ACTION_BY_STATUS[str(_enum_to_str(status))]


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    application_id: Optional[int] = None,
    opportunity_id: Optional[int] = None,
    time_slot_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit one structured JSON audit line. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "application_id": application_id,
        "opportunity_id": opportunity_id,
        "time_slot_id": time_slot_id,
        "user_id": user_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "version": version,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("failed to emit audit log") from exc
