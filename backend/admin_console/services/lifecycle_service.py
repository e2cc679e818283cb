# Overview: Lifecycle controller for one organization; optimistic apply, commit or roll back.

"""
Organization Lifecycle Controller

================================================================================
PURPOSE: The single entry point for everything an operator does to an
organization: activate, deactivate, extend the subscription, grant or revoke
member access, add members, edit details and transfer ownership.
================================================================================

EVERY MUTATION FOLLOWS THE SAME STEPS:
    1. check the acting user's permission (pure, permissions.py)
    2. validate preconditions locally (no call is made if this fails)
    3. build an optimistic working copy (what the operator sees meanwhile)
    4. await the Directory Service
    5a. success: replace the committed snapshot WHOLESALE with the server's
    5b. failure: drop the working copy; committed was never touched

RESULTS:
- Rejections (validation, conflict, invariant, permission) come back as a
  failed LifecycleResult. They are never raised.
- PersistenceError is logged and re-raised after the working copy is gone.

CONCURRENCY:
- One edit session at a time.
- Ownership transfer and field editing are mutually exclusive.
- refresh() swaps in a newer committed snapshot and rebases an open edit
  session; the operator's draft is never touched by it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

from ..permissions import (
    ACTIVATE_ORGANIZATION,
    ADD_MEMBER,
    DEACTIVATE_ORGANIZATION,
    EDIT_ORGANIZATION,
    EXTEND_SUBSCRIPTION,
    MANAGE_MEMBER_ACCESS,
    TRANSFER_OWNERSHIP,
    VIEW_ORGANIZATION,
    PermissionDeniedError,
    require_permission,
)
from ..records import (
    ActingUser,
    Deactivation,
    MemberRole,
    OrganizationRecord,
    OrgStatus,
    SubscriptionExtensionRecord,
    SubscriptionStatus,
)
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ValidationError,
    collect_errors,
    validate_date_of_birth,
    validate_deactivation_reason,
    validate_email,
    validate_gender,
    validate_person_name,
    validate_phone,
    validate_subscription_type,
    validate_tax_id_edit,
)
from .directory_service import DirectoryService, PersistenceError, members_payload
from .edit_session_service import (
    CancelContinuation,
    CancelDecision,
    CancelResolution,
    EditSession,
)
from .membership_service import (
    InvariantViolation,
    MemberNotFoundError,
    MembershipRegistry,
    new_member_id,
)
from .ownership_service import TransferMode, transfer_to_existing, transfer_to_new
from .status_service import SubscriptionHealth, extension_end_date, subscription_health


logger = logging.getLogger(__name__)


# Errors that reject an operation without touching any state
REJECTIONS = (ValidationError, ConflictError, InvariantViolation, PermissionDeniedError)

# A teammate added directly needs less than a new Owner
MEMBER_RULES = {
    "name": validate_person_name,
    "email": validate_email,
    "phone": validate_phone,
    "tax_id": validate_tax_id_edit,
    "gender": validate_gender,
}


def _error_kind(error: Optional[Exception]) -> Optional[str]:
    if error is None:
        return None
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, ConflictError):
        return "conflict"
    if isinstance(error, InvariantViolation):
        return "invariant"
    if isinstance(error, PermissionDeniedError):
        return "permission"
    return "error"


@dataclass(frozen=True)
class LifecycleResult:
    """
    Outcome of one controller operation.

    `organization` is always what the operator should now see. On failure
    `error` holds the typed rejection and `field_errors` any per-field
    messages.
    """
    success: bool
    message: str
    organization: Optional[OrganizationRecord] = None
    error: Optional[Exception] = None
    field_errors: dict[str, str] = field(default_factory=dict)
    decision: Optional[CancelDecision] = None
    extension: Optional[SubscriptionExtensionRecord] = None

    @property
    def error_kind(self) -> Optional[str]:
        return _error_kind(self.error)

    @classmethod
    def ok(cls, message: str, organization: OrganizationRecord, **extra: Any) -> "LifecycleResult":
        return cls(success=True, message=message, organization=organization, **extra)

    @classmethod
    def rejected(cls, error: Exception, organization: OrganizationRecord, **extra: Any) -> "LifecycleResult":
        return cls(
            success=False,
            message=getattr(error, "message", None) or str(error),
            organization=organization,
            error=error,
            field_errors=dict(getattr(error, "errors", None) or {}),
            **extra,
        )

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "message": self.message,
            "organization": self.organization.to_dict() if self.organization else None,
        }
        if not self.success:
            data["error"] = self.error_kind
            data["field_errors"] = self.field_errors
        if self.decision is not None:
            data["decision"] = {
                "continuation": self.decision.continuation.value,
                "resolution": self.decision.resolution.value,
                "errors": dict(self.decision.errors),
            }
        if self.extension is not None:
            data["extension"] = self.extension.to_dict()
        return data


class LifecycleController:
    """Lifecycle operations over one organization."""

    def __init__(
        self,
        directory: DirectoryService,
        organization: OrganizationRecord,
        *,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_member_id,
    ):
        self._directory = directory
        self._committed = organization
        self._pending: Optional[OrganizationRecord] = None
        self._clock = clock
        self._id_factory = id_factory
        self._edit = EditSession(self._persist_edit)
        self._edit_actor: Optional[ActingUser] = None
        self._transfer_in_flight = False

    @classmethod
    async def load(cls, directory: DirectoryService, org_id: str, **kwargs: Any) -> "LifecycleController":
        organization = await directory.fetch_organization(org_id)
        return cls(directory, organization, **kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def organization(self) -> OrganizationRecord:
        """The optimistic copy while a call is in flight, else the committed snapshot."""
        return self._pending if self._pending is not None else self._committed

    @property
    def committed(self) -> OrganizationRecord:
        return self._committed

    @property
    def edit_session(self) -> EditSession:
        return self._edit

    @property
    def transfer_in_flight(self) -> bool:
        return self._transfer_in_flight

    def subscription_health(self, now: Optional[datetime | date] = None) -> SubscriptionHealth:
        return subscription_health(self.organization.subscription.expiry, now or self._clock())

    async def refresh(self, acting_user: ActingUser) -> LifecycleResult:
        """Re-fetch the organization (background poll). Open drafts are kept."""
        try:
            require_permission(acting_user, VIEW_ORGANIZATION)
        except REJECTIONS as exc:
            return self._rejected(exc)

        fetched = await self._call(self._directory.fetch_organization(self._committed.id), "refresh")
        self._commit(fetched)
        return LifecycleResult.ok("Organization refreshed", self.organization)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def deactivate(self, acting_user: ActingUser, reason: str) -> LifecycleResult:
        org = self._committed
        try:
            require_permission(acting_user, DEACTIVATE_ORGANIZATION)
            if not org.is_active:
                raise InvariantViolation(f"{org.name} is already inactive")
            message = validate_deactivation_reason(reason)
            if message:
                raise ValidationError("reason", message)
        except REJECTIONS as exc:
            return self._rejected(exc)

        reason = reason.strip()
        optimistic = replace(
            org,
            status=OrgStatus.INACTIVE,
            deactivation=Deactivation(reason=reason, date=self._today()),
        )

        async def call() -> OrganizationRecord:
            await self._directory.set_organization_active(org.id, False, reason=reason, actor=acting_user)
            return await self._directory.fetch_organization(org.id)

        confirmed = await self._apply(optimistic, call, "deactivate")
        return LifecycleResult.ok(
            f"{confirmed.name} has been deactivated. All users have been logged out and access revoked",
            confirmed,
        )

    async def activate(self, acting_user: ActingUser) -> LifecycleResult:
        org = self._committed
        try:
            require_permission(acting_user, ACTIVATE_ORGANIZATION)
            if org.is_active:
                raise InvariantViolation(f"{org.name} is already active")
        except REJECTIONS as exc:
            return self._rejected(exc)

        # The deactivation record stays for audit
        optimistic = replace(org, status=OrgStatus.ACTIVE)

        async def call() -> OrganizationRecord:
            await self._directory.set_organization_active(org.id, True, actor=acting_user)
            return await self._directory.fetch_organization(org.id)

        confirmed = await self._apply(optimistic, call, "activate")
        return LifecycleResult.ok(
            f"{confirmed.name} has been reactivated. Users can log in again",
            confirmed,
        )

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    async def extend_subscription(self, acting_user: ActingUser, duration: str) -> LifecycleResult:
        org = self._committed
        try:
            require_permission(acting_user, EXTEND_SUBSCRIPTION)
            message = validate_subscription_type(duration)
            if message:
                raise ValidationError("duration", message)
        except REJECTIONS as exc:
            return self._rejected(exc)

        today = self._today()
        subscription = org.subscription
        new_end = extension_end_date(subscription.expiry, today, duration)
        provisional = SubscriptionExtensionRecord(
            extension_date=today,
            duration=duration,
            previous_end_date=subscription.expiry,
            new_end_date=new_end,
            extended_by=acting_user.name,
        )
        optimistic = replace(
            org,
            subscription=replace(
                subscription,
                status=SubscriptionStatus.ACTIVE,
                expiry=new_end,
                history=subscription.history + (provisional,),
            ),
        )

        extension = None

        async def call() -> OrganizationRecord:
            nonlocal extension
            result = await self._directory.extend_subscription(org.id, duration, actor=acting_user)
            extension = result.extension
            return result.organization

        confirmed = await self._apply(optimistic, call, "extend_subscription")
        return LifecycleResult.ok(
            f"Subscription for {confirmed.name} extended until {extension.new_end_date.isoformat()}",
            confirmed,
            extension=extension,
        )

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def grant_access(self, acting_user: ActingUser, member_id: str) -> LifecycleResult:
        try:
            require_permission(acting_user, MANAGE_MEMBER_ACCESS)
            registry = self._registry()
            updated = self._member_op(lambda: registry.grant(member_id))
        except REJECTIONS as exc:
            return self._rejected(exc)

        member = registry.get(member_id)
        if updated is registry:
            return LifecycleResult.ok(f"{member.name} already has access", self._committed)

        confirmed = await self._persist_members(updated, acting_user, "grant_access")
        return LifecycleResult.ok(f"Access granted to {member.name}. They can now log in", confirmed)

    async def revoke_access(self, acting_user: ActingUser, member_id: str) -> LifecycleResult:
        try:
            require_permission(acting_user, MANAGE_MEMBER_ACCESS)
            registry = self._registry()
            updated = self._member_op(lambda: registry.revoke(member_id))
        except REJECTIONS as exc:
            return self._rejected(exc)

        member = registry.get(member_id)
        if updated is registry:
            return LifecycleResult.ok(f"{member.name} already has no access", self._committed)

        confirmed = await self._persist_members(updated, acting_user, "revoke_access")
        return LifecycleResult.ok(
            f"Access revoked for {member.name}. They have been logged out and can no longer log in",
            confirmed,
        )

    async def add_member(self, acting_user: ActingUser, profile: Mapping[str, Any], role: Any) -> LifecycleResult:
        try:
            require_permission(acting_user, ADD_MEMBER)
            try:
                role = MemberRole.parse(role)
            except ValueError as exc:
                raise ValidationError("role", str(exc))
            errors = collect_errors(profile, MEMBER_RULES)
            dob_error = validate_date_of_birth(profile.get("date_of_birth"), today=self._today())
            if dob_error:
                errors["date_of_birth"] = dob_error
            if errors:
                raise ValidationError(None, "Member profile is invalid", errors)
            updated = self._registry().add(profile, role, id_factory=self._id_factory)
        except REJECTIONS as exc:
            return self._rejected(exc)

        confirmed = await self._persist_members(updated, acting_user, "add_member")
        return LifecycleResult.ok(f"{profile['name'].strip()} has been added as {role.value}", confirmed)

    async def begin_ownership_transfer(
        self,
        acting_user: ActingUser,
        mode: TransferMode | str,
        payload: Mapping[str, Any],
    ) -> LifecycleResult:
        """
        Transfer ownership to an existing member (payload: {"target_id"}) or
        to a new person (payload: the full profile).
        """
        try:
            require_permission(acting_user, TRANSFER_OWNERSHIP)
            if self._edit.is_open:
                raise InvariantViolation("Close the edit session before transferring ownership")
            if self._transfer_in_flight:
                raise InvariantViolation("An ownership transfer is already in progress")
            try:
                mode = TransferMode(mode)
            except ValueError:
                raise ValidationError("mode", "Transfer mode must be 'existing' or 'new'")

            registry = self._registry()
            if mode is TransferMode.EXISTING:
                outcome = transfer_to_existing(registry, payload.get("target_id"))
            else:
                outcome = transfer_to_new(registry, payload, today=self._today(), id_factory=self._id_factory)
        except REJECTIONS as exc:
            return self._rejected(exc)

        self._transfer_in_flight = True
        try:
            confirmed = await self._persist_members(outcome.registry, acting_user, "transfer_ownership")
        finally:
            self._transfer_in_flight = False

        return LifecycleResult.ok(
            f"Ownership transferred to {outcome.new_owner.name}. {outcome.previous_owner.name} is now an Admin",
            confirmed,
        )

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def begin_edit(self, acting_user: ActingUser) -> LifecycleResult:
        try:
            require_permission(acting_user, EDIT_ORGANIZATION)
            if self._transfer_in_flight:
                raise InvariantViolation("Finish the ownership transfer before editing")
            self._edit.begin_edit(self._committed)
        except REJECTIONS as exc:
            return self._rejected(exc)
        return LifecycleResult.ok(f"Editing {self._committed.name}", self.organization)

    def update_field(self, acting_user: ActingUser, field_name: str, value: Any) -> LifecycleResult:
        """
        Write one field into the draft.

        An invalid value still lands in the draft; the result is a failure
        carrying the field's error so it can be shown next to the input.
        """
        try:
            require_permission(acting_user, EDIT_ORGANIZATION)
            message = self._edit.update_field(field_name, value)
            if message:
                raise ValidationError(field_name, message)
        except REJECTIONS as exc:
            return self._rejected(exc)
        return LifecycleResult.ok("Draft updated", self.organization)

    def cancel_edit(
        self,
        acting_user: ActingUser,
        continuation: CancelContinuation | str = CancelContinuation.CANCEL,
    ) -> LifecycleResult:
        try:
            require_permission(acting_user, EDIT_ORGANIZATION)
            decision = self._edit.request_cancel(continuation)
        except REJECTIONS as exc:
            return self._rejected(exc)
        if decision.is_pending:
            return LifecycleResult.ok("You have unsaved changes", self.organization, decision=decision)
        return LifecycleResult.ok("Edit cancelled", self.organization, decision=decision)

    async def resolve_cancel(
        self,
        acting_user: ActingUser,
        decision: CancelDecision,
        resolution: CancelResolution | str,
    ) -> LifecycleResult:
        try:
            require_permission(acting_user, EDIT_ORGANIZATION)
            resolution = CancelResolution(resolution)
        except ValueError:
            return self._rejected(ValidationError("resolution", "Resolution must be 'discard' or 'save_and_continue'"))
        except REJECTIONS as exc:
            return self._rejected(exc)

        self._edit_actor = acting_user
        try:
            decision = await self._edit.resolve(decision, resolution)
        except REJECTIONS as exc:
            return self._rejected(exc)
        finally:
            self._edit_actor = None

        if decision.errors:
            return self._rejected(
                ValidationError(None, "Fix the highlighted fields before saving", decision.errors),
                decision=decision,
            )
        if decision.resolution is CancelResolution.DISCARD:
            return LifecycleResult.ok("Changes discarded", self.organization, decision=decision)
        if decision.resolution is CancelResolution.SAVE_AND_CONTINUE:
            return LifecycleResult.ok(f"{self._committed.name} has been updated", self.organization, decision=decision)
        return LifecycleResult.ok("You have unsaved changes", self.organization, decision=decision)

    async def save_edit(self, acting_user: ActingUser) -> LifecycleResult:
        try:
            require_permission(acting_user, EDIT_ORGANIZATION)
            self._edit_actor = acting_user
            try:
                errors = await self._edit.commit()
            finally:
                self._edit_actor = None
            if errors:
                raise ValidationError(None, "Fix the highlighted fields before saving", errors)
        except REJECTIONS as exc:
            return self._rejected(exc)
        return LifecycleResult.ok(f"{self._committed.name} has been updated", self.organization)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _today(self) -> date:
        now = self._clock()
        return now.date() if isinstance(now, datetime) else now

    def _registry(self) -> MembershipRegistry:
        return MembershipRegistry(self._committed.members)

    def _member_op(self, op: Callable[[], MembershipRegistry]) -> MembershipRegistry:
        try:
            return op()
        except MemberNotFoundError:
            raise ValidationError("member_id", "Member not found in this organization")

    def _rejected(self, exc: Exception, **extra: Any) -> LifecycleResult:
        if isinstance(exc, InvariantViolation):
            logger.warning("Rejected on organization %s: %s", self._committed.id, exc)
        return LifecycleResult.rejected(exc, self.organization, **extra)

    def _commit(self, confirmed: OrganizationRecord) -> None:
        self._committed = confirmed
        if self._edit.is_open:
            self._edit.rebase(confirmed)

    async def _call(self, awaitable: Awaitable[OrganizationRecord], action: str) -> OrganizationRecord:
        try:
            return await awaitable
        except PersistenceError as exc:
            logger.error("%s failed for organization %s: %s", action, self._committed.id, exc.message)
            raise

    async def _apply(
        self,
        optimistic: OrganizationRecord,
        call: Callable[[], Awaitable[OrganizationRecord]],
        action: str,
    ) -> OrganizationRecord:
        """Show `optimistic` while `call` runs; commit its result or drop it."""
        self._pending = optimistic
        try:
            confirmed = await self._call(call(), action)
        finally:
            self._pending = None
        self._commit(confirmed)
        return confirmed

    async def _persist_members(
        self,
        registry: MembershipRegistry,
        acting_user: ActingUser,
        action: str,
    ) -> OrganizationRecord:
        org = self._committed
        optimistic = org.with_members(registry.members)
        members = members_payload(registry.members)
        return await self._apply(
            optimistic,
            lambda: self._directory.update_organization(org.id, {"members": members}, actor=acting_user),
            action,
        )

    async def _persist_edit(self, payload: dict[str, Any]) -> OrganizationRecord:
        org = self._committed
        optimistic = org.with_editable_values(payload)
        return await self._apply(
            optimistic,
            lambda: self._directory.update_organization(org.id, payload, actor=self._edit_actor),
            "save_edit",
        )
