# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


def _is_authenticated() -> bool:
    return hasattr(g, "actor_id") and hasattr(g, "actor_role")


def require_auth(f):
    """
    Require an authenticated actor.

    Authentication happens upstream (gateway / auth service); this service
    trusts the forwarded headers and only checks they are well-formed.
    Sets:
    - g.actor_id: integer user id, recorded on every ledger entry
    - g.actor_role: one of admin, manager, cashier

    Returns 401 if either header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
        raw_role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip().lower()

        if not raw_id or not raw_role:
            return jsonify({"error": "Authentication required"}), 401

        if not raw_id.isdigit() or int(raw_id) <= 0:
            return jsonify({"error": f"Invalid {ACTOR_ID_HEADER} header"}), 401

        if raw_role not in ROLES:
            return jsonify({"error": f"Invalid {ACTOR_ROLE_HEADER} header"}), 401

        g.actor_id = int(raw_id)
        g.actor_role = raw_role

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the authenticated actor to hold one of `roles`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.actor_role not in roles:
                current_app.logger.info(
                    "Denied %s %s for actor %s (role %s)",
                    request.method, request.path, g.actor_id, g.actor_role,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
