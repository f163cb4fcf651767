import pytest

from docingest.core.exceptions import InvalidStatusTransition
from docingest.knowledge.ingestion.status import TERMINAL_STATUSES, can_transition, ensure_transition
from docingest.models.document import DocumentStatus

ALLOWED = {
    (DocumentStatus.PENDING, DocumentStatus.PROCESSING),
    (DocumentStatus.PROCESSING, DocumentStatus.COMPLETED),
    (DocumentStatus.PROCESSING, DocumentStatus.INDEXED),
    (DocumentStatus.PROCESSING, DocumentStatus.ERROR),
    (DocumentStatus.COMPLETED, DocumentStatus.INDEXED),
}


@pytest.mark.parametrize("current", list(DocumentStatus))
@pytest.mark.parametrize("target", list(DocumentStatus))
def test_transition_table(current, target):
    expected = target is DocumentStatus.PENDING or (current, target) in ALLOWED

    assert can_transition(current, target) is expected


def test_ensure_transition_raises_for_forbidden_edge():
    with pytest.raises(InvalidStatusTransition) as excinfo:
        ensure_transition(DocumentStatus.ERROR, DocumentStatus.COMPLETED)

    assert excinfo.value.error_code == "invalid_status_transition"
    assert excinfo.value.details == {"current": "error", "target": "completed"}


def test_ensure_transition_accepts_raw_values():
    assert ensure_transition("pending", "processing") is DocumentStatus.PROCESSING


def test_terminal_statuses():
    assert DocumentStatus.PENDING not in TERMINAL_STATUSES
    assert DocumentStatus.PROCESSING not in TERMINAL_STATUSES
    assert len(TERMINAL_STATUSES) == 3
