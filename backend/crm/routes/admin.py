# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes

Provides endpoints for:
- Staff accounts (list, approve, change role, deactivate, permanent delete)
- Daily registration limit approvals
- Audit log browsing
- Permission table management

All endpoints require authentication and appropriate permissions.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission, require_roles
from ..errors import CrmError
from ..extensions import db
from ..permissions import Role, Resource, Action, ADMIN_ROLES, RESOURCES, ACTIONS
from ..services import audit_service, permission_service, quota_service, user_service
from ..validation import Payload, page_args, pagination_meta
from crm.time_utils import business_clock

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

ROLE_VALUES = tuple(r.value for r in Role)


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@admin_bp.get("/users")
@require_auth
@require_permission(Resource.USERS, Action.VIEW)
def list_users_route():
    """
    Staff listing within the caller's view scope.

    Query params: role, isActive (true/false), search, page, limit
    """
    try:
        page, limit = page_args(request.args)
        is_active_raw = request.args.get("isActive")
        is_active = None if not is_active_raw else is_active_raw.lower() == "true"
        role = request.args.get("role") or None
        if role and role.upper() not in ROLE_VALUES:
            return jsonify({"success": False, "error": "유효하지 않은 역할입니다."}), 400

        rows, total = user_service.list_users(
            g.current_user,
            role=role,
            is_active=is_active,
            search=(request.args.get("search") or "").strip() or None,
            page=page,
            limit=limit,
        )
        return jsonify({
            "success": True,
            "data": [u.to_dict() for u in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list users")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_permission(Resource.USERS, Action.DELETE)
def delete_user_route(user_id: int):
    """
    Deactivate a user, or remove them entirely with ?permanent=true.

    Deactivation hands the user's customers to the caller.
    """
    permanent = request.args.get("permanent", "false").lower() == "true"
    try:
        if permanent:
            data, entry = user_service.delete_permanently(user_id, g.current_user)
            message = f"{data['userName']} 직원이 완전히 삭제되었습니다."
        else:
            data, entry = user_service.deactivate(user_id, g.current_user)
            reassigned = data["reassignedCustomers"]
            message = (
                f"{reassigned}명의 고객이 관리자에게 재배분되었습니다."
                if reassigned
                else "재배분할 고객이 없습니다."
            )
        audit_service.emit(entry, request)
        return jsonify({"success": True, "data": data, "message": message}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete user")
        return jsonify({"success": False, "error": "Failed to delete user"}), 500


@admin_bp.patch("/users/<int:user_id>/role")
@require_auth
@require_permission(Resource.USERS, Action.UPDATE)
def change_role_route(user_id: int):
    try:
        p = Payload(request.get_json(silent=True))
        role = p.choice("role", ROLE_VALUES)
        p.finish()

        user, entry = user_service.change_role(user_id, role, g.current_user)
        audit_service.emit(entry, request)
        return jsonify({"success": True, "data": user.to_dict(), "message": "역할이 변경되었습니다."}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change user role")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@admin_bp.post("/users/<int:user_id>/approve")
@require_auth
@require_permission(Resource.USERS, Action.APPROVE)
def approve_user_route(user_id: int):
    try:
        p = Payload(request.get_json(silent=True))
        role = p.choice("role", ROLE_VALUES, required=False)
        p.finish()

        user, entry = user_service.approve_user(user_id, g.current_user, role=role)
        audit_service.emit(entry, request)
        return jsonify({"success": True, "data": user.to_dict(), "message": "사용자가 승인되었습니다."}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve user")
        return jsonify({"success": False, "error": "Internal server error"}), 500


# =============================================================================
# DAILY LIMIT
# =============================================================================

@admin_bp.get("/daily-limit")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def daily_limit_statuses_route():
    """Every active non-admin user's status today, plus those at their limit."""
    try:
        statuses = quota_service.list_statuses(business_clock().today())
        exceeded = [s for s in statuses if s["exceeded"]]
        return jsonify({
            "success": True,
            "data": exceeded,
            "count": len(exceeded),
            "allUsers": statuses,
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list daily limit statuses")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@admin_bp.post("/daily-limit")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def approve_daily_limit_route():
    """
    Raise a user's limit for today by one base quota.

    Request body: {"userId": int}
    """
    try:
        p = Payload(request.get_json(silent=True))
        user_id = p.integer("userId", minimum=1)
        p.finish()

        data, entry = quota_service.approve(user_id, g.current_user, business_clock().today())
        db.session.commit()
        audit_service.emit(entry, request)

        return jsonify({
            "success": True,
            "data": data,
            "message": (
                f"{data['user']['name']}님의 일일 등록 제한이 "
                f"+{quota_service.base_limit()}건 증가했습니다. (현재 제한: {data['newLimit']}건)"
            ),
        }), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve daily limit")
        return jsonify({"success": False, "error": "Internal server error"}), 500


# =============================================================================
# AUDIT LOG
# =============================================================================

@admin_bp.get("/audit-logs")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def audit_logs_route():
    page, limit = page_args(request.args, default_limit=50)
    rows, total = audit_service.list_audit_logs(
        entity=request.args.get("entity") or None,
        action=request.args.get("action") or None,
        page=page,
        limit=limit,
    )
    return jsonify({
        "success": True,
        "data": [r.to_dict() for r in rows],
        "pagination": pagination_meta(page, limit, total),
    }), 200


# =============================================================================
# PERMISSION TABLE
# =============================================================================

@admin_bp.get("/permissions")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def list_permissions_route():
    rows = permission_service.list_permissions()
    return jsonify({
        "success": True,
        "data": [r.to_dict() for r in rows],
        "resources": list(RESOURCES),
        "actions": list(ACTIONS),
    }), 200


@admin_bp.post("/permissions")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def create_permission_route():
    try:
        p = Payload(request.get_json(silent=True))
        role = p.choice("role", ROLE_VALUES)
        resource = p.choice("resource", RESOURCES)
        action = p.choice("action", ACTIONS)
        is_allowed = p.flag("isAllowed", default=True)
        p.finish()

        permission = permission_service.create_permission(
            role=role, resource=resource, action=action, is_allowed=is_allowed
        )
        return jsonify({"success": True, "data": permission.to_dict()}), 201

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code


@admin_bp.patch("/permissions/<int:permission_id>")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def update_permission_route(permission_id: int):
    try:
        p = Payload(request.get_json(silent=True))
        is_allowed = p.flag("isAllowed", required=True)
        p.finish()

        permission = permission_service.update_permission(permission_id, is_allowed=is_allowed)
        return jsonify({"success": True, "data": permission.to_dict()}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code


@admin_bp.delete("/permissions/<int:permission_id>")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def delete_permission_route(permission_id: int):
    try:
        permission_service.delete_permission(permission_id)
        return jsonify({"success": True, "message": "권한이 삭제되었습니다."}), 200
    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
