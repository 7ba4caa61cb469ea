"""Client-side working state for the order and authorization screens.

Nothing here is persisted. A RecordList mirrors whatever the latest store
snapshot said; the AuthorizationEditor tracks one edit dialog from first
change to save or cancel.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Generic, Iterator, TypeVar

from authdesk.models import Order, OrderStatus, PriorAuthorization, filter_by_status

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_COLORS = {
    "completed": "bg-green-100 text-green-800",
    "pending": "bg-blue-100 text-blue-800",
    "processing": "bg-yellow-100 text-yellow-800",
    "submitted": "bg-yellow-100 text-yellow-800",
    "cancelled": "bg-red-100 text-red-800",
    "rejected": "bg-red-100 text-red-800",
}
DEFAULT_STATUS_COLOR = "bg-gray-100 text-gray-800"


def status_color(status: Any) -> str:
    value = status.value if isinstance(status, Enum) else str(status or "")
    return STATUS_COLORS.get(value.lower(), DEFAULT_STATUS_COLOR)


class RecordList(Generic[T]):
    def __init__(self, records: list[T] | None = None):
        self._records: list[T] = list(records or [])

    def replace(self, records: list[T]) -> None:
        """Take a store snapshot wholesale; unsaved local rows are dropped."""
        self._records = list(records)

    def add_local(self, record: T) -> None:
        self._records.insert(0, record)

    def filtered(self, status: str | None = "all") -> list[T]:
        return filter_by_status(self._records, status)

    @property
    def items(self) -> list[T]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._records))


def new_local_order(orders: RecordList[Order], fields: dict[str, Any]) -> Order:
    """Create an order from the form without a store round-trip."""
    order = Order.model_validate(
        {
            **fields,
            "id": f"ORD-{len(orders) + 1:03d}",
            "status": OrderStatus.PROCESSING,
            "createdAt": datetime.now(timezone.utc),
        }
    )
    orders.add_local(order)
    return order


# ---------------------------------------------------------------------------
# Authorization edit dialog
# ---------------------------------------------------------------------------

class EditorState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    VALIDATING = "validating"
    VALID = "validated_valid"
    INVALID = "validated_invalid"
    SAVED = "saved"


class EditorStateError(RuntimeError):
    pass


class OverrideRequiredError(RuntimeError):
    pass


EDITABLE_FIELDS = ("patient_name", "patient_date_of_birth", "icd_codes", "cpt_codes", "cpt_codes_explanation")


def require_saveable(
    verdict: dict[str, Any] | None,
    override_acknowledged: bool = False,
    override_explanation: str = "",
) -> bool:
    """Return the isOverride flag to store, or raise if saving is not allowed.

    A negative verdict only saves with an explicit acknowledgment and a
    non-empty override explanation.
    """
    if verdict is None:
        raise OverrideRequiredError("Codes must be validated before saving")
    if verdict.get("isValid") is True:
        return False
    if override_acknowledged is not True:
        raise OverrideRequiredError("Validation failed; override acknowledgment is required")
    if not (override_explanation or "").strip():
        raise OverrideRequiredError("Validation failed; an override explanation is required")
    return True


class AuthorizationEditor:
    """Idle -> Editing -> Validating -> Validated(valid|invalid) -> Saved, or back to Idle on cancel."""

    def __init__(self, auth: PriorAuthorization):
        self.auth = auth
        self.state = EditorState.IDLE
        self.draft: dict[str, Any] = {}
        self.verdict: dict[str, Any] | None = None
        self.override_acknowledged = False
        self.override_explanation = ""
        self._reset_draft()

    def _reset_draft(self) -> None:
        self.draft = {name: getattr(self.auth, name) for name in EDITABLE_FIELDS}
        self.draft["icd_codes"] = list(self.draft["icd_codes"])
        self.draft["cpt_codes"] = list(self.draft["cpt_codes"])
        self.verdict = None
        self.override_acknowledged = False
        self.override_explanation = ""

    def _expect(self, *states: EditorState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise EditorStateError(f"Editor is {self.state.value}; expected {allowed}")

    def edit(self, **fields: Any) -> None:
        self._expect(EditorState.IDLE, EditorState.EDITING, EditorState.VALID, EditorState.INVALID)
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
        self.draft.update(fields)
        self.verdict = None
        self.override_acknowledged = False
        self.override_explanation = ""
        self.state = EditorState.EDITING

    def begin_validation(self) -> None:
        self._expect(EditorState.EDITING, EditorState.VALID, EditorState.INVALID)
        self.state = EditorState.VALIDATING

    def apply_verdict(self, verdict: dict[str, Any]) -> None:
        self._expect(EditorState.VALIDATING)
        self.verdict = verdict
        if verdict.get("isValid") is True:
            self.draft["cpt_codes_explanation"] = verdict.get("explanation") or self.draft["cpt_codes_explanation"]
            self.state = EditorState.VALID
        else:
            self.state = EditorState.INVALID

    def validation_failed(self) -> None:
        self._expect(EditorState.VALIDATING)
        self.state = EditorState.EDITING

    def validate(self, validator: Callable[[list[str], list[str], str], dict[str, Any]]) -> dict[str, Any]:
        self.begin_validation()
        try:
            verdict = validator(self.draft["icd_codes"], self.draft["cpt_codes"], self.draft["cpt_codes_explanation"])
        except Exception:
            self.validation_failed()
            raise
        self.apply_verdict(verdict)
        return verdict

    def acknowledge_override(self, explanation: str) -> None:
        self._expect(EditorState.INVALID)
        if not explanation.strip():
            raise OverrideRequiredError("An override explanation is required")
        self.override_explanation = explanation
        self.override_acknowledged = True

    @property
    def can_save(self) -> bool:
        if self.state is EditorState.VALID:
            return True
        return (
            self.state is EditorState.INVALID
            and self.override_acknowledged
            and bool(self.override_explanation.strip())
        )

    def changes(self) -> dict[str, Any]:
        is_override = require_saveable(self.verdict, self.override_acknowledged, self.override_explanation)
        return {
            **self.draft,
            "is_override": is_override,
            "override_explanation": self.override_explanation if is_override else "",
        }

    def save(self, saver: Callable[[str, dict[str, Any]], PriorAuthorization]) -> PriorAuthorization:
        self._expect(EditorState.VALID, EditorState.INVALID)
        if not self.can_save:
            raise OverrideRequiredError("Validation failed; acknowledge the override before saving")
        saved = saver(self.auth.id, self.changes())
        self.auth = saved
        self.state = EditorState.SAVED
        logger.info("Saved authorization %s (override=%s)", saved.id, saved.is_override)
        return saved

    def cancel(self) -> None:
        self._reset_draft()
        self.state = EditorState.IDLE
