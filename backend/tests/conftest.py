"""
Pytest fixtures for the organization console tests.

Provides the Flask app against in-memory SQLite, a fresh database per test,
record builders, acting users, and an in-memory Directory Service fake.
"""

from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from admin_console import create_app
from admin_console.extensions import db
from admin_console.models import Membership, Organization, SessionToken
from admin_console.records import (
    ActingUser,
    Deactivation,
    Location,
    MemberRecord,
    MemberRole,
    OrganizationRecord,
    OrgStatus,
    SubscriptionExtensionRecord,
    SubscriptionRecord,
    SubscriptionStatus,
    WorkingHours,
)
from admin_console.services.directory_service import (
    DirectoryService,
    ExtensionResult,
    OrganizationNotFoundError,
    PersistenceError,
    normalize_member,
)
from admin_console.services.status_service import extension_end_date


NOW = datetime(2024, 6, 1, 9, 30)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DIRECTORY_BASE_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# RECORD BUILDERS
# =============================================================================

def make_member(member_id, name, email, role=MemberRole.SALES_REP, **fields):
    return MemberRecord(id=member_id, name=name, email=email, role=role, **fields)


def make_org(members=None, **fields):
    if members is None:
        members = (
            make_member("m-asha", "Asha Rai", "asha@acme.test", MemberRole.OWNER, email_verified=True),
            make_member("m-raj", "Raj Shah", "raj@acme.test", MemberRole.ADMIN, email_verified=True),
            make_member("m-mina", "Mina Karki", "mina@acme.test", MemberRole.SALES_REP),
        )
    values = dict(
        id="org-1",
        name="Acme Traders",
        address="Putalisadak, Kathmandu",
        phone="9800000000",
        tax_id="123456789",
        location=Location(latitude=27.7172, longitude=85.324),
        status=OrgStatus.ACTIVE,
        subscription=SubscriptionRecord(
            status=SubscriptionStatus.ACTIVE,
            expiry=date(2024, 12, 31),
            type="6months",
        ),
        created_date=date(2023, 1, 15),
        email_verified=True,
        working_hours=WorkingHours(check_in="09:00", check_out="18:00", weekly_off_day="Saturday"),
        members=tuple(members),
    )
    values.update(fields)
    return OrganizationRecord(**values)


def new_owner_profile(**overrides):
    profile = {
        "name": "Nora Lama",
        "email": "nora@acme.test",
        "phone": "9811111111",
        "tax_id": "987654321",
        "citizenship_id": "12-34-567",
        "address": "Lalitpur",
        "latitude": 27.67,
        "longitude": 85.32,
        "date_of_birth": "1990-04-12",
        "gender": "Female",
    }
    profile.update(overrides)
    return profile


@pytest.fixture
def org():
    return make_org()


@pytest.fixture
def superadmin():
    return ActingUser(id="op-1", name="Sita Admin", role="superadmin")


@pytest.fixture
def developer():
    return ActingUser(id="op-2", name="Dev Person", role="developer")


@pytest.fixture
def viewer():
    return ActingUser(id="op-3", name="Support Agent", role="support")


# =============================================================================
# DIRECTORY FAKE
# =============================================================================

class FakeDirectoryService(DirectoryService):
    """
    In-memory directory.

    - `calls` records (method, org_id) for every call
    - `fail_with` makes the next call raise that PersistenceError
    - `during_call` is invoked inside each mutating call, before it returns
    """

    def __init__(self, *organizations, clock=lambda: NOW):
        self.organizations = {o.id: o for o in organizations}
        self.calls = []
        self.fail_with = None
        self.during_call = None
        self.clock = clock

    def _enter(self, method, org_id):
        self.calls.append((method, org_id))
        if self.during_call is not None:
            self.during_call()
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc
        if org_id not in self.organizations:
            raise OrganizationNotFoundError(f"Organization {org_id} not found", status_code=404)
        return self.organizations[org_id]

    async def fetch_organization(self, org_id):
        self.calls.append(("fetch_organization", org_id))
        if org_id not in self.organizations:
            raise OrganizationNotFoundError(f"Organization {org_id} not found", status_code=404)
        return self.organizations[org_id]

    async def update_organization(self, org_id, fields, *, actor=None):
        org = self._enter("update_organization", org_id)
        fields = dict(fields)
        members = fields.pop("members", None)
        if fields:
            org = org.with_editable_values(fields)
        if members is not None:
            org = org.with_members(normalize_member(m) for m in members)
        self.organizations[org_id] = org
        return org

    async def set_organization_active(self, org_id, active, *, reason=None, actor=None):
        org = self._enter("set_organization_active", org_id)
        if active:
            org = replace(org, status=OrgStatus.ACTIVE)
        else:
            org = replace(
                org,
                status=OrgStatus.INACTIVE,
                deactivation=Deactivation(reason=reason, date=self.clock().date()),
            )
        self.organizations[org_id] = org

    async def extend_subscription(self, org_id, duration, *, actor=None):
        org = self._enter("extend_subscription", org_id)
        today = self.clock().date()
        subscription = org.subscription
        extension = SubscriptionExtensionRecord(
            extension_date=today,
            duration=duration,
            previous_end_date=subscription.expiry,
            new_end_date=extension_end_date(subscription.expiry, today, duration),
            extended_by=actor.name if actor else "System",
        )
        org = replace(
            org,
            subscription=replace(
                subscription,
                status=SubscriptionStatus.ACTIVE,
                expiry=extension.new_end_date,
                history=subscription.history + (extension,),
            ),
        )
        self.organizations[org_id] = org
        return ExtensionResult(organization=org, extension=extension)

    def mutating_calls(self):
        return [c for c in self.calls if c[0] != "fetch_organization"]


@pytest.fixture
def directory(org):
    return FakeDirectoryService(org)


@pytest.fixture
def persistence_failure():
    return PersistenceError("Directory is down for maintenance", status_code=503)


# =============================================================================
# SQL SEEDING
# =============================================================================

def seed_organization(expiry=date(2024, 12, 31), org_id="org-1"):
    """Acme Traders with Owner/Admin/Sales Rep rows and live sessions for Asha and Mina."""
    org = Organization(
        id=org_id,
        name="Acme Traders",
        address="Putalisadak",
        phone="9800000000",
        tax_id="123456789",
        latitude=27.7172,
        longitude=85.324,
        subscription_end_date=expiry,
        subscription_type="6months",
    )
    db.session.add(org)
    members = [
        ("m-asha", "Asha Rai", "asha@acme.test", "Owner"),
        ("m-raj", "Raj Shah", "raj@acme.test", "Admin"),
        ("m-mina", "Mina Karki", "mina@acme.test", "Sales Rep"),
    ]
    for member_id, name, email, role in members:
        db.session.add(Membership(
            id=member_id,
            org_id=org.id,
            name=name,
            email=email,
            email_key=email.lower(),
            role=role,
            email_verified=True,
        ))
    db.session.flush()
    for i, member_id in enumerate(["m-asha", "m-mina"]):
        db.session.add(SessionToken(
            membership_id=member_id,
            org_id=org.id,
            token_hash=f"hash-{org_id}-{i}",
            expires_at=NOW + timedelta(days=1),
        ))
    db.session.commit()
    return org
