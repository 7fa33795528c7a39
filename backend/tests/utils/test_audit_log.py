import json
from typing import Any, List

import pytest
from workstay.models import ApplicationStatus
from workstay.utils import audit_log
from workstay.utils.request_id import set_request_id


def test_emit_audit_log_outputs_json(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    set_request_id("req-123")
    audit_log.emit_audit_log(
        action="application.created",
        initiator="user",
        application_id=1,
        opportunity_id=3,
        time_slot_id=2,
        user_id=4,
        status_from=None,
        status_to=ApplicationStatus.PENDING,
        version=1,
        extra={"start_date": "2025-04-01"},
    )
    set_request_id(None)

    assert len(messages) == 1
    payload = json.loads(messages[0])
    assert payload["action"] == "application.created"
    assert payload["initiator"] == "user"
    assert payload["request_id"] == "req-123"
    assert payload["status_to"] == "PENDING"
    assert payload["start_date"] == "2025-04-01"
    assert "status_from" not in payload
    assert "timestamp" in payload


def test_emit_audit_log_raises_on_logger_failure(monkeypatch) -> None:
    class DummyLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="application.cancelled",
            initiator="host",
            application_id=1,
            status_from=ApplicationStatus.ACTIVE,
            status_to=ApplicationStatus.CANCELLED,
            version=3,
        )


@pytest.mark.parametrize(
    "status,action",
    [
        (ApplicationStatus.PENDING, "application.submitted"),
        (ApplicationStatus.ACTIVE, "application.activated"),
        (ApplicationStatus.REJECTED, "application.rejected"),
        (ApplicationStatus.CANCELLED, "application.cancelled"),
    ],
)
def test_action_for_status(status: ApplicationStatus, action: str) -> None:
    assert audit_log.action_for_status(status) == action
