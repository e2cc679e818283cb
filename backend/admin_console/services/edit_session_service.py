# Overview: Draft/committed edit buffer for organization details with save/discard protocol.

"""
Edit Session Controller

================================================================================
PURPOSE: Let an operator edit organization fields without ever losing work or
silently overwriting newer data.
================================================================================

STATE MACHINE:
    VIEWING -> EDITING -> SAVING -> VIEWING
                       -> DISCARDING -> VIEWING

TWO BUFFERS:
- committed: the last server-confirmed organization. A background refresh may
  replace it (rebase) at any time.
- draft: the operator's working values. Only the operator changes it.

RULES:
1. Field errors are advisory while typing; the value still lands in the draft.
2. commit() re-validates everything and makes no call while errors remain.
3. A successful commit replaces committed with the SERVER's object, not the
   draft (the server normalizes and derives fields).
4. A failed commit leaves draft, dirty and EDITING exactly as they were.
5. Cancelling a dirty session never drops the draft on its own: it yields a
   CancelDecision the caller must resolve (discard or save-and-continue).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..records import EDITABLE_FIELDS, OrganizationRecord
from ..validation import (
    ValidationError,
    coerce_coordinate,
    collect_errors,
    format_phone,
    format_tax_id_edit,
    validate_address,
    validate_latitude,
    validate_longitude,
    validate_org_name,
    validate_phone,
    validate_subscription_type,
    validate_tax_id_edit,
)
from .membership_service import InvariantViolation


class EditState(str, enum.Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"
    DISCARDING = "discarding"


class CancelContinuation(str, enum.Enum):
    """What triggered the cancel: leaving edit mode, or closing the whole view."""
    CANCEL = "cancel"
    CLOSE = "close"


class CancelResolution(str, enum.Enum):
    PENDING = "pending"
    DISCARD = "discard"
    SAVE_AND_CONTINUE = "save_and_continue"


@dataclass
class CancelDecision:
    """
    The unsaved-changes decision point, as data.

    `continuation` records what the caller should do once the decision is
    resolved (CLOSE means also close the outer view). `errors` holds the
    field errors of a save-and-continue attempt that could not be saved.
    """
    continuation: CancelContinuation
    resolution: CancelResolution = CancelResolution.PENDING
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.resolution is CancelResolution.PENDING

    @property
    def should_close(self) -> bool:
        return not self.is_pending and self.continuation is CancelContinuation.CLOSE


# Working-hours fields are passthrough and carry no rule
EDIT_RULES = {
    "name": validate_org_name,
    "address": validate_address,
    "phone": validate_phone,
    "tax_id": validate_tax_id_edit,
    "latitude": validate_latitude,
    "longitude": validate_longitude,
    "subscription_type": validate_subscription_type,
}

PersistDraft = Callable[[dict[str, Any]], Awaitable[OrganizationRecord]]


class EditSession:
    """One edit flow over one organization."""

    def __init__(self, persist: PersistDraft):
        self._persist = persist
        self._state = EditState.VIEWING
        self._committed: Optional[OrganizationRecord] = None
        self._draft: dict[str, Any] = {}
        self._errors: dict[str, str] = {}
        self._dirty = False
        self._pending_decision: Optional[CancelDecision] = None

    @property
    def state(self) -> EditState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is not EditState.VIEWING

    @property
    def committed(self) -> Optional[OrganizationRecord]:
        return self._committed

    @property
    def draft(self) -> dict[str, Any]:
        return dict(self._draft)

    @property
    def errors(self) -> dict[str, str]:
        return dict(self._errors)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending_decision(self) -> Optional[CancelDecision]:
        return self._pending_decision

    def begin_edit(self, committed: OrganizationRecord) -> None:
        if self.is_open:
            raise InvariantViolation("An edit session is already open for this organization")
        self._committed = committed
        self._draft = committed.editable_values()
        self._errors = {}
        self._dirty = False
        self._pending_decision = None
        self._state = EditState.EDITING

    def update_field(self, field_name: str, value: Any) -> Optional[str]:
        """
        Write a value into the draft and return its validation error, if any.

        Raises:
            ValidationError: If the field is not editable
            InvariantViolation: If no edit session is open
        """
        self._require_editing()
        if field_name not in EDITABLE_FIELDS:
            raise ValidationError(field_name, f"{field_name} cannot be edited")

        # The edit form's PAN/VAT input only ever holds digits
        if field_name == "tax_id":
            value = format_tax_id_edit(value)

        rule = EDIT_RULES.get(field_name)
        message = rule(value) if rule else None
        if message:
            self._errors[field_name] = message
        else:
            self._errors.pop(field_name, None)

        self._draft[field_name] = value
        self._dirty = True
        return message

    def changed_fields(self) -> dict[str, Any]:
        """Draft values that differ from the committed organization."""
        if self._committed is None:
            return {}
        current = self._committed.editable_values()
        return {
            name: value
            for name, value in self._draft.items()
            if current.get(name) != value
        }

    def rebase(self, committed: OrganizationRecord) -> None:
        """Accept a newer committed snapshot without touching the draft."""
        if self._committed is not None and committed.id != self._committed.id:
            raise InvariantViolation("Cannot rebase an edit session onto another organization")
        self._committed = committed

    def request_cancel(self, continuation: CancelContinuation = CancelContinuation.CANCEL) -> CancelDecision:
        """
        Ask to leave edit mode.

        A clean session closes immediately and the returned decision is
        already resolved as DISCARD. A dirty session stays open and the
        returned decision is PENDING until resolve() is called.
        """
        self._require_editing()
        continuation = CancelContinuation(continuation)
        if not self._dirty:
            self._close()
            return CancelDecision(continuation=continuation, resolution=CancelResolution.DISCARD)

        decision = CancelDecision(continuation=continuation)
        self._pending_decision = decision
        return decision

    async def resolve(self, decision: CancelDecision, resolution: CancelResolution) -> CancelDecision:
        """
        Apply the caller's choice for a pending decision.

        Raises:
            InvariantViolation: If the decision is not the one pending here
            PersistenceError: If save-and-continue failed to persist
        """
        if decision is not self._pending_decision or not decision.is_pending:
            raise InvariantViolation("No matching unsaved-changes decision is pending")
        resolution = CancelResolution(resolution)
        if resolution is CancelResolution.PENDING:
            return decision

        if resolution is CancelResolution.DISCARD:
            self._state = EditState.DISCARDING
            decision.resolution = CancelResolution.DISCARD
            decision.errors = {}
            self._close()
            return decision

        decision.resolution = CancelResolution.SAVE_AND_CONTINUE
        resolved = False
        try:
            errors = await self.commit()
            if errors:
                decision.errors = errors
            else:
                decision.errors = {}
                resolved = True
        finally:
            if not resolved:
                # Still editing; the operator has to choose again
                decision.resolution = CancelResolution.PENDING
        return decision

    async def commit(self) -> dict[str, str]:
        """
        Validate and persist the full draft.

        Returns:
            The field->error map. Empty means the draft was saved and
            `committed` now holds the server's object.

        Raises:
            PersistenceError: If the directory call failed (session unchanged)
        """
        self._require_editing()
        self._errors = collect_errors(self._draft, EDIT_RULES)
        if self._errors:
            return dict(self._errors)

        payload = self._payload()
        self._state = EditState.SAVING
        saved = False
        try:
            confirmed = await self._persist(payload)
            saved = True
        finally:
            if not saved:
                self._state = EditState.EDITING

        self._committed = confirmed
        self._close()
        return {}

    def _payload(self) -> dict[str, Any]:
        payload = dict(self._draft)
        payload["name"] = str(payload["name"]).strip()
        payload["address"] = str(payload["address"]).strip()
        payload["phone"] = format_phone(payload["phone"])
        payload["tax_id"] = format_tax_id_edit(payload.get("tax_id"))
        payload["latitude"] = coerce_coordinate(payload["latitude"])
        payload["longitude"] = coerce_coordinate(payload["longitude"])
        return payload

    def _require_editing(self) -> None:
        if self._state is not EditState.EDITING:
            raise InvariantViolation(f"No edit in progress (state is {self._state.value})")

    def _close(self) -> None:
        self._draft = {}
        self._errors = {}
        self._dirty = False
        self._pending_decision = None
        self._state = EditState.VIEWING
