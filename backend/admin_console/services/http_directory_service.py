# Overview: httpx client for a remote organization directory REST API.

"""
HTTP Directory Service

Talks to the organization backend the console was originally built against:

    GET  /organizations/{id}
    PUT  /organizations/{id}
    PUT  /organizations/{id}/deactivate      {"reason": ...}
    PUT  /organizations/{id}/reactivate
    POST /organizations/{id}/extend-subscription   {"extensionDuration": ...}

The remote API speaks camelCase and its own field names (panVatNumber,
googleMapLink, users...). Outgoing fields are mapped here; incoming payloads
go through normalize_organization() like everything else.

FAILURES: transport errors and non-2xx responses raise PersistenceError
carrying the server's `message` when it sent one.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from ..records import ActingUser, OrganizationRecord
from ..validation import address_link, coerce_coordinate
from .directory_service import (
    DirectoryService,
    ExtensionResult,
    OrganizationNotFoundError,
    PersistenceError,
    normalize_extension,
    normalize_organization,
)


logger = logging.getLogger(__name__)


# Canonical field -> remote API key
API_FIELD_NAMES = {
    "name": "name",
    "address": "address",
    "phone": "phone",
    "tax_id": "panVatNumber",
    "latitude": "latitude",
    "longitude": "longitude",
    "check_in": "checkInTime",
    "check_out": "checkOutTime",
    "half_day_check_out": "halfDayCheckOutTime",
    "weekly_off_day": "weeklyOffDay",
    "timezone": "timezone",
    "subscription_type": "subscriptionType",
}

API_MEMBER_FIELD_NAMES = {
    "id": "_id",
    "name": "name",
    "email": "email",
    "role": "role",
    "email_verified": "emailVerified",
    "is_active": "isActive",
    "phone": "phone",
    "tax_id": "panNumber",
    "citizenship_id": "citizenshipNumber",
    "address": "address",
    "latitude": "latitude",
    "longitude": "longitude",
    "date_of_birth": "dateOfBirth",
    "gender": "gender",
}


def to_api_fields(fields: Mapping[str, Any]) -> dict:
    """Map canonical update fields to the remote API's names."""
    body: dict[str, Any] = {}
    for key, value in fields.items():
        if key == "members":
            body["users"] = [
                {API_MEMBER_FIELD_NAMES[k]: v for k, v in member.items() if k in API_MEMBER_FIELD_NAMES}
                for member in value
            ]
            continue
        api_key = API_FIELD_NAMES.get(key)
        if api_key is None:
            raise PersistenceError(f"Unknown organization field: {key}")
        body[api_key] = value

    # The remote keeps the map link as a stored field
    latitude = coerce_coordinate(fields.get("latitude"))
    longitude = coerce_coordinate(fields.get("longitude"))
    if latitude is not None and longitude is not None:
        body["googleMapLink"] = address_link(latitude, longitude)
    return body


def _server_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, Mapping):
        return body.get("message") or body.get("error")
    return None


def _unwrap(body: Any) -> Any:
    if isinstance(body, Mapping) and isinstance(body.get("data"), Mapping):
        return body["data"]
    return body


class HttpDirectoryService(DirectoryService):
    """
    Remote directory client.

    Pass `transport` (e.g. httpx.MockTransport) to run against a fake server.
    Call aclose() when done; the routes do this per request.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _headers(self, actor: Optional[ActingUser] = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if actor:
            headers["X-Acting-User-Id"] = actor.id
            headers["X-Acting-User-Name"] = actor.name
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        actor: Optional[ActingUser] = None,
    ) -> Any:
        try:
            response = await self.client.request(method, path, json=json, headers=self._headers(actor))
        except httpx.HTTPError as exc:
            logger.error("Directory request %s %s failed: %s", method, path, exc)
            raise PersistenceError() from exc

        if response.status_code == 404:
            raise OrganizationNotFoundError(_server_message(response) or "Organization not found", status_code=404)
        if response.is_error:
            message = _server_message(response)
            logger.error("Directory request %s %s returned %s: %s", method, path, response.status_code, message)
            raise PersistenceError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PersistenceError("Directory returned a response that is not JSON") from exc

    async def fetch_organization(self, org_id: str) -> OrganizationRecord:
        body = await self._request("GET", f"/organizations/{org_id}")
        return normalize_organization(_unwrap(body))

    async def update_organization(
        self,
        org_id: str,
        fields: Mapping[str, Any],
        *,
        actor: Optional[ActingUser] = None,
    ) -> OrganizationRecord:
        body = await self._request("PUT", f"/organizations/{org_id}", json=to_api_fields(fields), actor=actor)
        return normalize_organization(_unwrap(body))

    async def set_organization_active(
        self,
        org_id: str,
        active: bool,
        *,
        reason: Optional[str] = None,
        actor: Optional[ActingUser] = None,
    ) -> None:
        if active:
            await self._request("PUT", f"/organizations/{org_id}/reactivate", json={}, actor=actor)
        else:
            await self._request("PUT", f"/organizations/{org_id}/deactivate", json={"reason": reason}, actor=actor)

    async def extend_subscription(
        self,
        org_id: str,
        duration: str,
        *,
        actor: Optional[ActingUser] = None,
    ) -> ExtensionResult:
        body = _unwrap(await self._request(
            "POST",
            f"/organizations/{org_id}/extend-subscription",
            json={"extensionDuration": duration},
            actor=actor,
        ))
        if not isinstance(body, Mapping):
            raise PersistenceError("Directory returned an unreadable extension response")

        organization = normalize_organization(body.get("organization") or body)
        details = body.get("extensionDetails")
        if isinstance(details, Mapping):
            extension = normalize_extension(details)
        elif organization.subscription.history:
            extension = organization.subscription.history[-1]
        else:
            raise PersistenceError("Directory did not report the subscription extension")
        return ExtensionResult(organization=organization, extension=extension)
