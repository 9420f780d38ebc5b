"""
Audit log for credential lifecycle events.
Created: 2026-03-02

Append-only JSONL file next to the rest of the persisted state. Records who
obtained or lost a credential, never the credential itself.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal issuance (code, token, registration)
    WARNING = "warning"  # Revocations
    ALERT = "alert"  # Suspected misuse (refresh token replay)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # user_id, client_id, or "anonymous"
    action: str  # e.g. "oauth_token_issued"
    target: str  # e.g. "client:mcp_ab12..."
    organization_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        actor: str,
        action: str,
        target: str,
        organization_id: str | None = None,
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            organization_id=organization_id,
            context=context,
        )


class AuditLogger:
    """Append-only JSONL audit logger."""

    def __init__(self, log_path: Path | None = None):
        if log_path is None:
            from casebook.config import get_settings

            log_path = get_settings().resolved_data_dir() / "audit.jsonl"
        self.log_path = log_path

    def log(self, event: AuditEvent) -> None:
        """Write an event; a failed write is reported on the system logger."""
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(event)) + "\n")
        except OSError as e:
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event.action)

    def log_api_event(
        self,
        action: str,
        target: str,
        actor: str = "anonymous",
        organization_id: str | None = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        event = AuditEvent.create(
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            organization_id=organization_id,
            **context,
        )
        self.log(event)
        return event.id


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset singleton (for testing)."""
    global _audit_logger
    _audit_logger = None
