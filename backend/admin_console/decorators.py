# Overview: Request decorators for console API routes.

from functools import wraps
from flask import request, jsonify, g

from .records import ActingUser


def require_acting_user(f):
    """
    Establish the acting user for lifecycle routes.

    Authentication happens upstream (gateway/console shell); it forwards the
    operator as headers:
    - X-Acting-User-Id
    - X-Acting-User-Name
    - X-Acting-User-Role

    Sets g.acting_user to an ActingUser. Returns 401 if the id or role is
    missing. Whether the role may do anything is decided later, per action,
    by permissions.require_permission.
    """
    @wraps(f)
    async def decorated_function(*args, **kwargs):
        user_id = (request.headers.get("X-Acting-User-Id") or "").strip()
        role = (request.headers.get("X-Acting-User-Role") or "").strip()
        if not user_id or not role:
            return jsonify({"error": "Acting user required"}), 401

        g.acting_user = ActingUser(
            id=user_id,
            name=(request.headers.get("X-Acting-User-Name") or user_id).strip(),
            role=role,
        )
        return await f(*args, **kwargs)

    return decorated_function
