# Overview: Pytest coverage for directory normalization, the SQL directory and the HTTP client.

"""
Directory Service Tests

Covers:
1. normalize_organization() across payload shapes (camelCase, flat, owner-only)
2. SqlDirectoryService against in-memory SQLite: deactivation revokes
   sessions and audits, member sync, subscription extension
3. HttpDirectoryService against httpx.MockTransport: request mapping and
   error translation
"""

import json
from datetime import date

import httpx
import pytest

from admin_console.extensions import db
from admin_console.models import Membership, Organization, SecurityEvent, SessionToken, SubscriptionExtension
from admin_console.records import ActingUser, MemberRole, OrgStatus, SubscriptionStatus
from admin_console.services.directory_service import (
    GENERIC_FAILURE_MESSAGE,
    OrganizationNotFoundError,
    PersistenceError,
    normalize_organization,
)
from admin_console.services.http_directory_service import HttpDirectoryService, to_api_fields
from admin_console.services.membership_service import MembershipRegistry
from admin_console.services.ownership_service import transfer_to_existing, transfer_to_new
from admin_console.services.sql_directory_service import SqlDirectoryService

from conftest import NOW, new_owner_profile, seed_organization


OPERATOR = ActingUser(id="op-1", name="Sita Admin", role="superadmin")


# =============================================================================
# NORMALIZATION
# =============================================================================

CAMEL_PAYLOAD = {
    "_id": "64f0c0ffee",
    "name": "Acme Traders",
    "address": "Putalisadak",
    "phone": "9800000000",
    "panVatNumber": "123456789",
    "googleMapLink": "https://maps.google.com/?q=27.7172,85.324",
    "isActive": False,
    "emailVerified": True,
    "subscriptionEndDate": "2024-12-31T00:00:00.000Z",
    "isSubscriptionActive": True,
    "subscriptionDuration": "12months",
    "checkInTime": "09:00",
    "weeklyOffDay": "Saturday",
    "deactivationReason": "Non-payment",
    "deactivatedDate": "2024-05-20",
    "createdAt": "2023-01-15T08:00:00Z",
    "users": [
        {"_id": "u1", "name": "Asha Rai", "email": "asha@acme.test", "role": "owner", "emailVerified": True},
        {"_id": "u2", "name": "Raj Shah", "email": "raj@acme.test", "role": "admin", "isActive": False},
    ],
    "subscriptionHistory": [
        {
            "extensionDate": "2024-01-01",
            "extensionDuration": "6months",
            "previousEndDate": "2024-06-30",
            "newEndDate": "2024-12-31",
            "extendedBy": {"name": "Sita Admin"},
        }
    ],
}


class TestNormalizeOrganization:
    def test_camel_case_payload(self):
        org = normalize_organization(CAMEL_PAYLOAD)

        assert org.id == "64f0c0ffee"
        assert org.tax_id == "123456789"
        assert org.status is OrgStatus.INACTIVE
        assert org.location.latitude == 27.7172
        assert org.location.longitude == 85.324
        assert org.subscription.expiry == date(2024, 12, 31)
        assert org.subscription.status is SubscriptionStatus.ACTIVE
        assert org.subscription.type == "12months"
        assert org.subscription.history[0].extended_by == "Sita Admin"
        assert org.working_hours.check_in == "09:00"
        assert org.deactivation.reason == "Non-payment"
        assert org.deactivation.date == date(2024, 5, 20)
        assert org.created_date == date(2023, 1, 15)
        assert org.owner_name == "Asha Rai"
        assert org.member("u2").role is MemberRole.ADMIN
        assert org.member("u2").is_active is False

    def test_map_link_fills_missing_coordinates(self):
        org = normalize_organization(dict(CAMEL_PAYLOAD, latitude=0, longitude=None))
        assert (org.location.latitude, org.location.longitude) == (27.7172, 85.324)

    def test_stored_coordinate_on_the_equator_is_kept(self):
        org = normalize_organization(dict(CAMEL_PAYLOAD, latitude=0, longitude=32.5))
        assert (org.location.latitude, org.location.longitude) == (0, 32.5)

    def test_owner_only_payload_synthesizes_owner(self):
        org = normalize_organization({
            "id": "org-2",
            "name": "Solo Shop",
            "ownerName": "Hari Bista",
            "email": "hari@solo.test",
            "subscriptionExpiry": "2025-01-01",
        })
        assert len(org.members) == 1
        assert org.owner.role is MemberRole.OWNER
        assert org.owner_email == "hari@solo.test"
        assert org.deactivation is None

    def test_missing_id(self):
        with pytest.raises(PersistenceError):
            normalize_organization({"name": "No Id", "subscriptionExpiry": "2025-01-01"})

    def test_two_owners_is_unreadable(self):
        payload = dict(CAMEL_PAYLOAD, users=[
            {"_id": "u1", "name": "A", "email": "a@acme.test", "role": "Owner"},
            {"_id": "u2", "name": "B", "email": "b@acme.test", "role": "Owner"},
        ])
        with pytest.raises(PersistenceError):
            normalize_organization(payload)

    def test_bad_date_is_unreadable(self):
        with pytest.raises(PersistenceError):
            normalize_organization(dict(CAMEL_PAYLOAD, subscriptionEndDate="soon"))

    def test_not_a_mapping(self):
        with pytest.raises(PersistenceError):
            normalize_organization(["nope"])


# =============================================================================
# SQL DIRECTORY
# =============================================================================

def events(event_type):
    return db.session.query(SecurityEvent).filter_by(event_type=event_type).all()


@pytest.fixture
def sql_directory(db_session):
    seed_organization()
    return SqlDirectoryService(clock=lambda: NOW)


class TestSqlDirectory:
    @pytest.mark.asyncio
    async def test_fetch_builds_canonical_record(self, sql_directory):
        org = await sql_directory.fetch_organization("org-1")
        assert org.status is OrgStatus.ACTIVE
        assert org.owner_name == "Asha Rai"
        assert len(org.members) == 3
        assert org.subscription.expiry == date(2024, 12, 31)

    @pytest.mark.asyncio
    async def test_unknown_organization(self, sql_directory):
        with pytest.raises(OrganizationNotFoundError) as exc_info:
            await sql_directory.fetch_organization("nope")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_deactivation_revokes_sessions_and_audits(self, sql_directory):
        await sql_directory.set_organization_active("org-1", False, reason="Non-payment", actor=OPERATOR)

        tokens = db.session.query(SessionToken).all()
        assert all(t.is_revoked for t in tokens)
        assert tokens[0].revoked_reason == "Organization deactivated"

        [event] = events("ORG_DEACTIVATED")
        assert event.actor_name == "Sita Admin"
        assert event.reason == "Non-payment (2 sessions revoked)"

        org = await sql_directory.fetch_organization("org-1")
        assert org.status is OrgStatus.INACTIVE
        assert org.deactivation.reason == "Non-payment"
        assert org.deactivation.date == date(2024, 6, 1)

    @pytest.mark.asyncio
    async def test_reactivation_keeps_deactivation_record(self, sql_directory):
        await sql_directory.set_organization_active("org-1", False, reason="Non-payment", actor=OPERATOR)
        await sql_directory.set_organization_active("org-1", True, actor=OPERATOR)

        org = await sql_directory.fetch_organization("org-1")
        assert org.status is OrgStatus.ACTIVE
        assert org.deactivation.reason == "Non-payment"
        assert len(events("ORG_REACTIVATED")) == 1

    @pytest.mark.asyncio
    async def test_update_fields(self, sql_directory):
        org = await sql_directory.update_organization(
            "org-1",
            {"name": "Acme Retail", "check_in": "10:00"},
            actor=OPERATOR,
        )
        assert org.name == "Acme Retail"
        assert org.working_hours.check_in == "10:00"
        [event] = events("ORG_UPDATED")
        assert event.reason == "name, check_in"

    @pytest.mark.asyncio
    async def test_unknown_field_rolls_back(self, sql_directory):
        with pytest.raises(PersistenceError):
            await sql_directory.update_organization("org-1", {"name": "Changed", "owner_name": "X"})
        assert db.session.get(Organization, "org-1").name == "Acme Traders"

    @pytest.mark.asyncio
    async def test_member_sync_transfers_ownership(self, sql_directory):
        org = await sql_directory.fetch_organization("org-1")
        outcome = transfer_to_existing(MembershipRegistry(org.members), "m-raj")

        updated = await sql_directory.update_organization(
            "org-1",
            {"members": [m.to_dict() for m in outcome.registry.members]},
            actor=OPERATOR,
        )

        assert updated.owner_name == "Raj Shah"
        assert updated.member("m-asha").role is MemberRole.ADMIN
        assert len(events("OWNERSHIP_TRANSFERRED")) == 1

    @pytest.mark.asyncio
    async def test_member_sync_audits_new_owner(self, sql_directory):
        org = await sql_directory.fetch_organization("org-1")
        outcome = transfer_to_new(
            MembershipRegistry(org.members),
            new_owner_profile(),
            today=NOW.date(),
            id_factory=lambda: "m-nora",
        )

        updated = await sql_directory.update_organization(
            "org-1",
            {"members": [m.to_dict() for m in outcome.registry.members]},
            actor=OPERATOR,
        )

        assert updated.owner_email == "nora@acme.test"
        transferred = events("OWNERSHIP_TRANSFERRED")
        assert len(transferred) == 1
        assert transferred[0].reason == "New owner: nora@acme.test (was asha@acme.test)"
        assert len(events("MEMBER_ADDED")) == 1

    @pytest.mark.asyncio
    async def test_member_sync_without_owner_change_has_no_transfer(self, sql_directory):
        org = await sql_directory.fetch_organization("org-1")
        registry = MembershipRegistry(org.members).revoke("m-mina")

        await sql_directory.update_organization(
            "org-1",
            {"members": [m.to_dict() for m in registry.members]},
            actor=OPERATOR,
        )

        assert events("OWNERSHIP_TRANSFERRED") == []

    @pytest.mark.asyncio
    async def test_member_sync_revoke_and_add(self, sql_directory):
        org = await sql_directory.fetch_organization("org-1")
        registry = MembershipRegistry(org.members).revoke("m-mina")
        registry = registry.add(
            {"name": "Kiran Thapa", "email": "Kiran@Acme.test"},
            MemberRole.MANAGER,
            id_factory=lambda: "m-kiran",
        )

        updated = await sql_directory.update_organization(
            "org-1",
            {"members": [m.to_dict() for m in registry.members]},
            actor=OPERATOR,
        )

        assert updated.member("m-mina").is_active is False
        assert updated.member("m-kiran").role is MemberRole.MANAGER
        assert db.session.get(Membership, "m-kiran").email_key == "kiran@acme.test"
        assert len(events("ACCESS_REVOKED")) == 1
        assert len(events("MEMBER_ADDED")) == 1

        mina_token = db.session.query(SessionToken).filter_by(membership_id="m-mina").one()
        asha_token = db.session.query(SessionToken).filter_by(membership_id="m-asha").one()
        assert mina_token.is_revoked is True
        assert mina_token.revoked_reason == "Access revoked"
        assert asha_token.is_revoked is False

    @pytest.mark.asyncio
    async def test_lapsed_subscription_reads_as_expired(self, db_session):
        seed_organization(expiry=date(2024, 5, 31))
        directory = SqlDirectoryService(clock=lambda: NOW)

        org = await directory.fetch_organization("org-1")

        assert org.subscription.status is SubscriptionStatus.EXPIRED
        assert db.session.get(Organization, "org-1").subscription_status == "Active"

    @pytest.mark.asyncio
    async def test_subscription_expiring_today_is_still_active(self, db_session):
        seed_organization(expiry=NOW.date())
        org = await SqlDirectoryService(clock=lambda: NOW).fetch_organization("org-1")
        assert org.subscription.status is SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_extend_lapsed_subscription(self, db_session):
        seed_organization(expiry=date(2024, 1, 1))
        directory = SqlDirectoryService(clock=lambda: NOW)
        assert (await directory.fetch_organization("org-1")).subscription.status is SubscriptionStatus.EXPIRED

        result = await directory.extend_subscription("org-1", "6months", actor=OPERATOR)
        assert result.organization.subscription.status is SubscriptionStatus.ACTIVE

        assert result.extension.new_end_date == date(2024, 12, 1)
        assert result.extension.extended_by == "Sita Admin"
        assert result.organization.subscription.expiry == date(2024, 12, 1)
        assert len(result.organization.subscription.history) == 1
        assert db.session.query(SubscriptionExtension).count() == 1
        assert len(events("SUBSCRIPTION_EXTENDED")) == 1

    @pytest.mark.asyncio
    async def test_extend_unknown_duration(self, sql_directory):
        with pytest.raises(PersistenceError) as exc_info:
            await sql_directory.extend_subscription("org-1", "3months")
        assert exc_info.value.status_code == 400


# =============================================================================
# HTTP DIRECTORY
# =============================================================================

def http_directory(handler):
    return HttpDirectoryService(
        "https://directory.test/api/",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


class TestToApiFields:
    def test_maps_names_and_adds_map_link(self):
        body = to_api_fields({"tax_id": "123", "latitude": 27.7, "longitude": 85.3, "check_in": "09:00"})
        assert body == {
            "panVatNumber": "123",
            "latitude": 27.7,
            "longitude": 85.3,
            "checkInTime": "09:00",
            "googleMapLink": "https://maps.google.com/?q=27.7,85.3",
        }

    def test_members_become_users(self):
        body = to_api_fields({"members": [{"id": "u1", "name": "Asha", "is_active": False, "tax_id": "9"}]})
        assert body == {"users": [{"_id": "u1", "name": "Asha", "isActive": False, "panNumber": "9"}]}


class TestHttpDirectory:
    @pytest.mark.asyncio
    async def test_fetch_unwraps_data_envelope(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": CAMEL_PAYLOAD})

        directory = http_directory(handler)
        org = await directory.fetch_organization("64f0c0ffee")
        await directory.aclose()

        assert org.name == "Acme Traders"
        assert seen[0].url.path == "/api/organizations/64f0c0ffee"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_deactivate_sends_reason_and_actor(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"message": "ok"})

        directory = http_directory(handler)
        await directory.set_organization_active("64f0c0ffee", False, reason="Non-payment", actor=OPERATOR)
        await directory.aclose()

        request = seen[0]
        assert request.method == "PUT"
        assert request.url.path.endswith("/deactivate")
        assert json.loads(request.content) == {"reason": "Non-payment"}
        assert request.headers["X-Acting-User-Name"] == "Sita Admin"

    @pytest.mark.asyncio
    async def test_extend_reads_extension_details(self):
        def handler(request):
            assert json.loads(request.content) == {"extensionDuration": "12months"}
            return httpx.Response(200, json={
                "organization": CAMEL_PAYLOAD,
                "extensionDetails": {
                    "extensionDate": "2024-06-01",
                    "extensionDuration": "12months",
                    "previousEndDate": "2024-06-30",
                    "newEndDate": "2025-06-30",
                    "extendedBy": "Sita Admin",
                },
            })

        directory = http_directory(handler)
        result = await directory.extend_subscription("64f0c0ffee", "12months", actor=OPERATOR)
        await directory.aclose()

        assert result.extension.new_end_date == date(2025, 6, 30)
        assert result.organization.id == "64f0c0ffee"

    @pytest.mark.asyncio
    async def test_server_message_is_kept(self):
        directory = http_directory(lambda request: httpx.Response(422, json={"message": "Email already in use"}))
        with pytest.raises(PersistenceError) as exc_info:
            await directory.update_organization("64f0c0ffee", {"name": "Acme"})
        await directory.aclose()

        assert exc_info.value.message == "Email already in use"
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_not_found(self):
        directory = http_directory(lambda request: httpx.Response(404, json={"error": "Organization not found"}))
        with pytest.raises(OrganizationNotFoundError):
            await directory.fetch_organization("missing")
        await directory.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure_uses_generic_message(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        directory = http_directory(handler)
        with pytest.raises(PersistenceError) as exc_info:
            await directory.fetch_organization("64f0c0ffee")
        await directory.aclose()

        assert exc_info.value.message == GENERIC_FAILURE_MESSAGE

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        directory = http_directory(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(PersistenceError):
            await directory.fetch_organization("64f0c0ffee")
        await directory.aclose()
