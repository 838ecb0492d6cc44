from dataclasses import dataclass, field
from functools import wraps
from flask import current_app, g, jsonify, request

# Sessions are issued by the upstream auth service; it forwards the
# authenticated user on every request it lets through.


@dataclass(frozen=True)
class CurrentUser:
    id: int
    roles: frozenset = field(default_factory=frozenset)

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles


def load_current_user():
    id_header = current_app.config.get("CURRENT_USER_HEADER", "X-User-Id")
    roles_header = current_app.config.get("CURRENT_USER_ROLES_HEADER", "X-User-Roles")

    raw_id = (request.headers.get(id_header) or "").strip()
    if not raw_id.isdigit():
        g.user = None
        return

    raw_roles = request.headers.get(roles_header) or "PLAYER"
    roles = frozenset(r.strip().upper() for r in raw_roles.split(",") if r.strip())
    g.user = CurrentUser(id=int(raw_id), roles=roles)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
