"""Audit logging utilities."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger("docingest.audit")

SYSTEM_ACTOR = "system"


class AuditLogger:
    """Structured audit logger.

    Records are emitted as one JSON object per line on the ``docingest.audit``
    logger. ``history`` keeps the most recent records in memory so operators
    and tests can inspect them without a log sink.
    """

    def __init__(self, *, history_size: int = 500) -> None:
        self.history_size = history_size
        self.history: List[Dict[str, Any]] = []

    def record(self, action: str, actor: Optional[str], details: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "actor": actor or SYSTEM_ACTOR,
            "details": details,
        }
        logger.info(json.dumps(payload, default=str))
        self.history.append(payload)
        if len(self.history) > self.history_size:
            del self.history[: len(self.history) - self.history_size]
        return payload

    def actions(self) -> List[str]:
        return [entry["action"] for entry in self.history]


audit_logger = AuditLogger()


__all__ = ["SYSTEM_ACTOR", "AuditLogger", "audit_logger"]
