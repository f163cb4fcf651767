"""Ingestion status machine for training documents."""

from __future__ import annotations

from typing import Dict, FrozenSet

from docingest.core.exceptions import InvalidStatusTransition
from docingest.models.document import DocumentStatus

# Reset to pending is allowed from every state and is handled separately.
_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.COMPLETED, DocumentStatus.INDEXED, DocumentStatus.ERROR}
    ),
    DocumentStatus.COMPLETED: frozenset({DocumentStatus.INDEXED}),
    DocumentStatus.INDEXED: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}

TERMINAL_STATUSES = frozenset({DocumentStatus.COMPLETED, DocumentStatus.INDEXED, DocumentStatus.ERROR})


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    current = DocumentStatus(current)
    target = DocumentStatus(target)
    if target is DocumentStatus.PENDING:
        return True
    return target in _TRANSITIONS[current]


def ensure_transition(current: DocumentStatus, target: DocumentStatus) -> DocumentStatus:
    if not can_transition(current, target):
        raise InvalidStatusTransition(DocumentStatus(current).value, DocumentStatus(target).value)
    return DocumentStatus(target)


__all__ = ["TERMINAL_STATUSES", "can_transition", "ensure_transition"]
