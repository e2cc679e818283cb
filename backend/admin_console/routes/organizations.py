# Overview: Flask API routes for organization lifecycle operations; parses input and returns JSON responses.

"""
Organization console API.

Every request loads a fresh LifecycleController for the organization, runs
one operation and returns the result. Edit sessions therefore live inside a
single PATCH request (begin, update each field, save).

STATUS CODES:
    400 validation   403 permission   409 conflict / invariant
    404 unknown organization          502 directory failure
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_acting_user
from ..permissions import VIEW_ORGANIZATION, PermissionDeniedError, require_permission
from ..services.directory_service import DirectoryService, OrganizationNotFoundError, PersistenceError
from ..services.http_directory_service import HttpDirectoryService
from ..services.lifecycle_service import LifecycleController, LifecycleResult
from ..services.sql_directory_service import SqlDirectoryService
from ..validation import ValidationError


organizations_bp = Blueprint("organizations", __name__, url_prefix="/api/console/organizations")


ERROR_STATUS = {
    "validation": 400,
    "permission": 403,
    "conflict": 409,
    "invariant": 409,
}


def _directory() -> DirectoryService:
    base_url = current_app.config.get("DIRECTORY_BASE_URL")
    if base_url:
        return HttpDirectoryService(
            base_url,
            token=current_app.config.get("DIRECTORY_API_TOKEN"),
            timeout=current_app.config.get("DIRECTORY_TIMEOUT_SECONDS", 10),
        )
    return SqlDirectoryService()


def _result_response(result: LifecycleResult, success_status: int = 200):
    if result.success:
        return jsonify(result.to_dict()), success_status
    body = {"error": result.message, "field_errors": result.field_errors, "kind": result.error_kind}
    return jsonify(body), ERROR_STATUS.get(result.error_kind, 400)


async def _run(org_id: str, operation, success_status: int = 200):
    directory = _directory()
    try:
        controller = await LifecycleController.load(directory, org_id)
        result = await operation(controller)
    except OrganizationNotFoundError as exc:
        return jsonify({"error": exc.message}), 404
    except PersistenceError as exc:
        current_app.logger.exception("Directory call failed for organization %s", org_id)
        return jsonify({"error": exc.message}), 502
    finally:
        await directory.aclose()
    return _result_response(result, success_status)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@organizations_bp.get("/<org_id>")
@require_acting_user
async def get_organization(org_id: str):
    directory = _directory()
    try:
        require_permission(g.acting_user, VIEW_ORGANIZATION)
        controller = await LifecycleController.load(directory, org_id)
    except PermissionDeniedError as exc:
        return jsonify({"error": str(exc)}), 403
    except OrganizationNotFoundError as exc:
        return jsonify({"error": exc.message}), 404
    except PersistenceError as exc:
        current_app.logger.exception("Failed to load organization %s", org_id)
        return jsonify({"error": exc.message}), 502
    finally:
        await directory.aclose()

    data = controller.organization.to_dict()
    data["subscription_health"] = controller.subscription_health().to_dict()
    return jsonify(data), 200


@organizations_bp.get("/<org_id>/subscription/history")
@require_acting_user
async def get_subscription_history(org_id: str):
    directory = _directory()
    try:
        require_permission(g.acting_user, VIEW_ORGANIZATION)
        organization = await directory.fetch_organization(org_id)
    except PermissionDeniedError as exc:
        return jsonify({"error": str(exc)}), 403
    except OrganizationNotFoundError as exc:
        return jsonify({"error": exc.message}), 404
    except PersistenceError as exc:
        current_app.logger.exception("Failed to load subscription history of %s", org_id)
        return jsonify({"error": exc.message}), 502
    finally:
        await directory.aclose()

    return jsonify([entry.to_dict() for entry in organization.subscription.history]), 200


@organizations_bp.patch("/<org_id>")
@require_acting_user
async def update_organization(org_id: str):
    data = _json_body()
    actor = g.acting_user

    async def operation(controller: LifecycleController) -> LifecycleResult:
        started = controller.begin_edit(actor)
        if not started.success:
            return started

        field_errors = {}
        for field_name, value in data.items():
            result = controller.update_field(actor, field_name, value)
            if not result.success:
                if result.error_kind != "validation":
                    return result
                field_errors.update(result.field_errors)
        if field_errors:
            return LifecycleResult.rejected(
                ValidationError(None, "Fix the highlighted fields before saving", field_errors),
                controller.organization,
            )
        return await controller.save_edit(actor)

    return await _run(org_id, operation)


@organizations_bp.post("/<org_id>/deactivate")
@require_acting_user
async def deactivate_organization(org_id: str):
    reason = _json_body().get("reason")
    return await _run(org_id, lambda c: c.deactivate(g.acting_user, reason))


@organizations_bp.post("/<org_id>/activate")
@require_acting_user
async def activate_organization(org_id: str):
    return await _run(org_id, lambda c: c.activate(g.acting_user))


@organizations_bp.post("/<org_id>/extend-subscription")
@require_acting_user
async def extend_subscription(org_id: str):
    data = _json_body()
    duration = data.get("duration") or data.get("extensionDuration")
    return await _run(org_id, lambda c: c.extend_subscription(g.acting_user, duration))


@organizations_bp.post("/<org_id>/members")
@require_acting_user
async def add_member(org_id: str):
    data = _json_body()
    profile = data.get("profile") if isinstance(data.get("profile"), dict) else {
        k: v for k, v in data.items() if k != "role"
    }
    role = data.get("role")
    return await _run(org_id, lambda c: c.add_member(g.acting_user, profile, role), success_status=201)


@organizations_bp.post("/<org_id>/members/<member_id>/grant-access")
@require_acting_user
async def grant_member_access(org_id: str, member_id: str):
    return await _run(org_id, lambda c: c.grant_access(g.acting_user, member_id))


@organizations_bp.post("/<org_id>/members/<member_id>/revoke-access")
@require_acting_user
async def revoke_member_access(org_id: str, member_id: str):
    return await _run(org_id, lambda c: c.revoke_access(g.acting_user, member_id))


@organizations_bp.post("/<org_id>/transfer-ownership")
@require_acting_user
async def transfer_ownership(org_id: str):
    data = _json_body()
    mode = data.get("mode")
    payload = data.get("profile") if mode == "new" and isinstance(data.get("profile"), dict) else data
    return await _run(org_id, lambda c: c.begin_ownership_transfer(g.acting_user, mode, payload))
