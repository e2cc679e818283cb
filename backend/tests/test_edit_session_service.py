# Overview: Pytest coverage for the edit session draft/committed protocol.

"""
Edit Session Tests

Covers the no-loss guarantees:
1. A failed commit keeps the draft, dirty flag and EDITING state
2. A dirty cancel always surfaces the decision point
3. Background rebases never touch the draft
4. commit() with field errors makes no call
"""

from dataclasses import replace

import pytest

from admin_console.services.directory_service import PersistenceError
from admin_console.services.edit_session_service import (
    CancelContinuation,
    CancelResolution,
    EditSession,
    EditState,
)
from admin_console.services.membership_service import InvariantViolation
from admin_console.validation import ValidationError

from conftest import make_org


class Recorder:
    """Persist callable that records payloads and answers like a server."""

    def __init__(self, org, fail=None):
        self.org = org
        self.payloads = []
        self.fail = fail

    async def __call__(self, payload):
        self.payloads.append(payload)
        if self.fail is not None:
            raise self.fail
        # Server normalizes: name comes back upper-cased
        saved = self.org.with_editable_values(payload)
        return replace(saved, name=saved.name.upper())


@pytest.fixture
def org():
    return make_org()


class TestDrafting:
    def test_begin_seeds_draft_from_committed(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        assert session.state is EditState.EDITING
        assert session.draft["name"] == "Acme Traders"
        assert session.dirty is False

    def test_second_begin_rejected(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        with pytest.raises(InvariantViolation):
            session.begin_edit(org)

    def test_invalid_value_lands_with_error(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        message = session.update_field("phone", "123")
        assert message == "Phone number must be 10 digits."
        assert session.draft["phone"] == "123"
        assert session.errors == {"phone": message}
        assert session.dirty is True

        assert session.update_field("phone", "9811111111") is None
        assert session.errors == {}

    def test_tax_id_keeps_only_digits(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        assert session.update_field("tax_id", "12-34 ab") is None
        assert session.draft["tax_id"] == "1234"
        assert session.errors == {}

        session.update_field("tax_id", "1234567890123456")
        assert session.draft["tax_id"] == "12345678901234"

    def test_unknown_field(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        with pytest.raises(ValidationError):
            session.update_field("owner_name", "Someone")

    def test_changed_fields(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")
        assert session.changed_fields() == {"address": "Baneshwor"}

    def test_rebase_keeps_draft(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")

        newer = replace(org, phone="9822222222")
        session.rebase(newer)

        assert session.committed is newer
        assert session.draft["address"] == "Baneshwor"
        assert session.draft["phone"] == org.phone
        assert session.dirty is True


class TestCommit:
    @pytest.mark.asyncio
    async def test_field_errors_block_the_call(self, org):
        persist = Recorder(org)
        session = EditSession(persist)
        session.begin_edit(org)
        session.update_field("phone", "12")

        errors = await session.commit()

        assert errors == {"phone": "Phone number must be 10 digits."}
        assert persist.payloads == []
        assert session.state is EditState.EDITING

    @pytest.mark.asyncio
    async def test_saved_tax_id_is_digits_only(self, org):
        persist = Recorder(org)
        session = EditSession(persist)
        session.begin_edit(org)
        session.update_field("tax_id", "PAN 5566-77")

        assert await session.commit() == {}

        assert persist.payloads[0]["tax_id"] == "556677"
        assert session.committed.tax_id == "556677"

    @pytest.mark.asyncio
    async def test_success_adopts_server_object(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        session.update_field("name", "Acme Retail")
        session.update_field("phone", "(981) 111-1111")

        assert await session.commit() == {}

        assert session.state is EditState.VIEWING
        assert session.committed.name == "ACME RETAIL"
        assert session.committed.phone == "9811111111"
        assert session.dirty is False

    @pytest.mark.asyncio
    async def test_failed_commit_loses_nothing(self, org):
        session = EditSession(Recorder(org, fail=PersistenceError("Server rejected the update")))
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")
        draft_before = session.draft

        with pytest.raises(PersistenceError):
            await session.commit()

        assert session.state is EditState.EDITING
        assert session.draft == draft_before
        assert session.dirty is True
        assert session.committed is org

        decision = session.request_cancel()
        assert decision.is_pending


class TestCancel:
    def test_clean_cancel_closes_immediately(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        decision = session.request_cancel(CancelContinuation.CLOSE)
        assert decision.resolution is CancelResolution.DISCARD
        assert decision.should_close
        assert session.state is EditState.VIEWING

    @pytest.mark.asyncio
    async def test_dirty_cancel_then_discard(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")

        decision = session.request_cancel()
        assert decision.is_pending
        assert session.state is EditState.EDITING

        await session.resolve(decision, CancelResolution.DISCARD)
        assert session.state is EditState.VIEWING
        assert session.committed is org

    @pytest.mark.asyncio
    async def test_save_and_continue_closes_outer_view(self, org):
        persist = Recorder(org)
        session = EditSession(persist)
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")

        decision = session.request_cancel(CancelContinuation.CLOSE)
        await session.resolve(decision, CancelResolution.SAVE_AND_CONTINUE)

        assert decision.resolution is CancelResolution.SAVE_AND_CONTINUE
        assert decision.should_close
        assert len(persist.payloads) == 1
        assert session.committed.address == "Baneshwor"

    @pytest.mark.asyncio
    async def test_save_and_continue_with_errors_stays_pending(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        session.update_field("phone", "12")

        decision = session.request_cancel()
        await session.resolve(decision, CancelResolution.SAVE_AND_CONTINUE)

        assert decision.is_pending
        assert "phone" in decision.errors
        assert session.state is EditState.EDITING

    @pytest.mark.asyncio
    async def test_save_and_continue_failure_stays_pending(self, org):
        session = EditSession(Recorder(org, fail=PersistenceError()))
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")
        decision = session.request_cancel()

        with pytest.raises(PersistenceError):
            await session.resolve(decision, CancelResolution.SAVE_AND_CONTINUE)

        assert decision.is_pending
        assert session.dirty is True

    @pytest.mark.asyncio
    async def test_stale_decision_rejected(self, org):
        session = EditSession(Recorder(org))
        session.begin_edit(org)
        session.update_field("address", "Baneshwor")
        stale = session.request_cancel()
        await session.resolve(stale, CancelResolution.DISCARD)

        session.begin_edit(org)
        with pytest.raises(InvariantViolation):
            await session.resolve(stale, CancelResolution.DISCARD)
