"""
routes/lifecycle.py — Soft delete, restore and permanent delete.

One blueprint serves all four entity kinds; the first path segment picks
the kind. Permission rules live in lifecycle_service.

Endpoints (base url_prefix=/api/v1):
  DELETE /{users|groups|expenses|payments}/:id            → 200  soft delete
  POST   /{users|groups|expenses|payments}/:id/restore    → 200  restore
  DELETE /{users|groups|expenses|payments}/:id/permanent  → 200  hard delete

Soft delete and restore are idempotent: repeating one returns 200 with
changed=false and a NO_STATE_CHANGE warning.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.errors import WarningCode
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.services import lifecycle_service
from backend.app.services.lifecycle_service import EntityKind

lifecycle_bp = Blueprint("lifecycle", __name__)

_KIND_BY_COLLECTION = {
    "users": EntityKind.USER,
    "groups": EntityKind.GROUP,
    "expenses": EntityKind.EXPENSE,
    "payments": EntityKind.PAYMENT,
}

_COLLECTIONS = "any(users, groups, expenses, payments)"


def _envelope(kind: EntityKind, entity_id: int, state: str, changed: bool):
    warnings = []
    if not changed:
        warnings.append({
            "code": WarningCode.NO_STATE_CHANGE,
            "message": f"{kind.value.capitalize()} {entity_id} was already {state}.",
        })
    return jsonify({
        "data": {"entity_type": kind.value, "id": entity_id, "state": state, "changed": changed},
        "warnings": warnings,
    }), 200


@lifecycle_bp.route(f"/<{_COLLECTIONS}:collection>/<int:entity_id>", methods=["DELETE"])
@require_auth
def soft_delete(collection: str, entity_id: int):
    kind = _KIND_BY_COLLECTION[collection]
    changed = lifecycle_service.soft_delete(kind, entity_id, g.user_id, db.session)
    db.session.commit()
    return _envelope(kind, entity_id, "soft_deleted", changed)


@lifecycle_bp.route(f"/<{_COLLECTIONS}:collection>/<int:entity_id>/restore", methods=["POST"])
@require_auth
def restore(collection: str, entity_id: int):
    kind = _KIND_BY_COLLECTION[collection]
    changed = lifecycle_service.restore(kind, entity_id, g.user_id, db.session)
    db.session.commit()
    return _envelope(kind, entity_id, "active", changed)


@lifecycle_bp.route(f"/<{_COLLECTIONS}:collection>/<int:entity_id>/permanent", methods=["DELETE"])
@require_auth
def hard_delete(collection: str, entity_id: int):
    """DELETE /:collection/:id/permanent — Only for soft-deleted entities (409 otherwise)."""
    kind = _KIND_BY_COLLECTION[collection]
    lifecycle_service.hard_delete(kind, entity_id, g.user_id, db.session)
    db.session.commit()
    return _envelope(kind, entity_id, "deleted", True)
