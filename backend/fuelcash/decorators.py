# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Establish the acting user for the request.

    Authentication happens upstream; the identity gateway forwards the
    authenticated user id in the X-User-Id header. Sets:
    - g.current_user: the active User
    - g.org_id: the user's organization (tenant context)

    Returns 401 when the header is missing, malformed or names an
    unknown or inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid actor header"}), 401

        user = db.session.get(User, user_id)
        if not user or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        g.org_id = user.org_id
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. super_admin passes every check.
    Must be applied after @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role != "super_admin" and user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def station_scope_error(station_id: int):
    """
    Tenant check for station-scoped routes. Returns an error response
    tuple, or None when the current user may act on the station.
    """
    from .models import Station

    station = db.session.get(Station, station_id)
    if not station:
        return jsonify({"error": "Station not found"}), 404

    user = g.current_user
    if user.role == "super_admin":
        return None
    if station.org_id != user.org_id:
        return jsonify({"error": "Station access denied"}), 403
    if user.role in ("employee", "manager") and user.station_id and user.station_id != station_id:
        return jsonify({"error": "Station access denied"}), 403
    return None
