# Overview: Flask API routes for customers; intake, listing, public pool, claims and transfer requests.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_permission, require_roles
from ..errors import CrmError
from ..extensions import db
from ..models.activity import CALL_OUTCOMES
from ..permissions import Resource, Action, ADMIN_ROLES
from ..services import (
    allocation_service,
    audit_service,
    call_log_service,
    customer_service,
    ledger_service,
    quota_service,
    transfer_request_service,
)
from ..validation import Payload, normalize_phone, page_args, pagination_meta
from crm.time_utils import business_clock


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _query_flag(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")


@customers_bp.post("")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.CREATE)
def create_customer_route():
    """
    Register a customer.

    Request body:
    {
        "phone": str (required),
        "name": str (optional, defaults to 고객_<last 4 digits>),
        "email", "address", "memo", "grade", "source", "assignedSite": optional,
        "assignedUserId": int (optional, requires customers:allocate)
    }

    Returns:
        201: created; duplicateWarning lists live customers with the same phone
        400: invalid payload
        403: daily quota reached (code QUOTA_EXCEEDED) or not allowed to allocate
    """
    try:
        p = Payload(request.get_json(silent=True))
        phone = p.phone("phone")
        name = p.text("name", required=False, max_length=128)
        email = p.email("email")
        address = p.text("address", required=False, max_length=255)
        memo = p.text("memo", required=False)
        grade = p.choice("grade", ("A", "B", "C"), required=False)
        source = p.text("source", required=False, max_length=16)
        assigned_site = p.text("assignedSite", required=False, max_length=128)
        assigned_user_id = p.integer("assignedUserId", required=False, minimum=1)
        p.finish()

        customer, duplicates, entry = customer_service.create_customer(
            g.current_user,
            business_clock().today(),
            phone=phone,
            name=name,
            email=email,
            address=address,
            memo=memo,
            grade=grade,
            source=source,
            assigned_site=assigned_site,
            assigned_user_id=assigned_user_id,
        )
        audit_service.emit(entry, request)

        return jsonify({
            "success": True,
            "data": customer.to_dict(),
            "duplicateWarning": duplicates or None,
            "message": "고객이 등록되었습니다.",
        }), 201

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@customers_bp.get("")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def list_customers_route():
    """Scoped listing; ?isPublic=true lists the public pool for everyone."""
    try:
        page, limit = page_args(request.args)
        rows, total = customer_service.list_customers(
            g.current_user,
            search=(request.args.get("search") or "").strip() or None,
            assigned_user_id=request.args.get("assignedUserId", type=int),
            is_public=_query_flag("isPublic"),
            site=request.args.get("site") or None,
            page=page,
            limit=limit,
        )
        return jsonify({
            "success": True,
            "data": [c.to_dict() for c in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list customers")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@customers_bp.get("/check-duplicate")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def check_duplicate_route():
    phone = normalize_phone(request.args.get("phone"))
    if not phone:
        return jsonify({"success": False, "error": "phone is required"}), 400
    matches = customer_service.check_duplicate(phone)
    return jsonify({
        "success": True,
        "data": {"isDuplicate": bool(matches), "customers": matches},
    }), 200


@customers_bp.get("/check-daily-limit")
@require_auth
def check_daily_limit_route():
    try:
        current = quota_service.status(g.current_user, business_clock().today())
        return jsonify({"success": True, "data": current.to_dict()}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to check daily limit")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@customers_bp.patch("/mark-public")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자만 공개DB 전환이 가능합니다.")
def mark_public_route():
    """
    Release customers to the public pool (isPublic=true) or withdraw them.

    Request body:
    {
        "customerIds": [int, ...],
        "isPublic": bool
    }
    """
    try:
        p = Payload(request.get_json(silent=True))
        customer_ids = p.int_list("customerIds")
        is_public = p.flag("isPublic", required=True)
        p.finish()

        data, entry = allocation_service.set_public(customer_ids, is_public, g.current_user)
        audit_service.emit(entry, request)

        return jsonify({
            "success": True,
            "data": {"count": data["count"]},
            "count": data["count"],
            "message": data["message"],
        }), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark customers public")
        return jsonify({"success": False, "error": "공개DB 전환에 실패했습니다."}), 500


@customers_bp.post("/bulk-delete")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자만 고객 삭제가 가능합니다.")
def bulk_delete_route():
    """
    Soft-delete many customers.

    Request body:
    {
        "customerIds": [int, ...]
    }

    Returns:
        200: deleted (count excludes rows that were already deleted)
        400: no ids
        403: not an admin, or the selection holds another user's customers
    """
    try:
        p = Payload(request.get_json(silent=True))
        customer_ids = p.int_list("customerIds")
        p.finish("고객을 1명 이상 선택해주세요.")

        data, entry = customer_service.bulk_soft_delete(customer_ids, g.current_user)
        audit_service.emit(entry, request)

        return jsonify({"success": True, "count": data["count"], "message": data["message"]}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to bulk delete customers")
        return jsonify({"success": False, "error": "고객 삭제에 실패했습니다."}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id, g.current_user)
        return jsonify({"success": True, "data": customer.to_dict()}), 200
    except CrmError as e:
        return jsonify(e.to_dict()), e.status_code


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.DELETE)
def delete_customer_route(customer_id: int):
    try:
        _, entry = customer_service.soft_delete(customer_id, g.current_user)
        audit_service.emit(entry, request)
        return jsonify({"success": True, "message": "고객이 삭제되었습니다."}), 200
    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/claim")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def claim_customer_route(customer_id: int):
    """
    Take a public-pool customer.

    Returns:
        200: claimed
        400: no call logged yet, or only no-answer calls
        404: customer not found
        409: no longer public (someone else claimed it)
    """
    try:
        customer, entry = allocation_service.claim(customer_id, g.current_user)
        audit_service.emit(entry, request)
        return jsonify({
            "success": True,
            "data": customer.to_dict(),
            "message": "고객을 내 DB로 가져왔습니다.",
        }), 200
    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to claim customer")
        return jsonify({"success": False, "error": "고객 클레임에 실패했습니다."}), 500


@customers_bp.get("/<int:customer_id>/allocation-history")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def allocation_history_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id, g.current_user)
        return jsonify({
            "success": True,
            "data": {
                "customer": customer.to_summary(),
                "history": ledger_service.history(customer.id),
            },
        }), 200
    except CrmError as e:
        return jsonify(e.to_dict()), e.status_code


@customers_bp.post("/<int:customer_id>/request-transfer")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def request_transfer_route(customer_id: int):
    """
    Ask for a held customer to move to another staff member.

    Request body:
    {
        "toUserId": int,
        "reason": str
    }
    """
    try:
        p = Payload(request.get_json(silent=True))
        to_user_id = p.integer("toUserId", minimum=1)
        reason = p.text("reason", max_length=1000)
        p.finish("담당자와 사유를 입력해주세요.")

        transfer, entry = transfer_request_service.request_transfer(
            customer_id, to_user_id, reason, g.current_user
        )
        audit_service.emit(entry, request)

        return jsonify({
            "success": True,
            "data": transfer.to_dict(),
            "message": "담당자 변경 요청이 등록되었습니다.",
        }), 201

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transfer request")
        return jsonify({"success": False, "error": "요청 처리 중 오류가 발생했습니다."}), 500


@customers_bp.post("/<int:customer_id>/call-logs")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def add_call_log_route(customer_id: int):
    """
    Request body:
    {
        "content": str,
        "outcome": CONNECTED|NO_ANSWER|CALLBACK|REJECTED|OTHER (optional)
    }
    """
    try:
        p = Payload(request.get_json(silent=True))
        content = p.text("content", max_length=5000)
        outcome = p.choice("outcome", CALL_OUTCOMES, required=False)
        p.finish()

        log = call_log_service.add_call_log(
            customer_id, g.current_user, content=content, outcome=outcome
        )
        return jsonify({"success": True, "data": log.to_dict()}), 201

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add call log")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/call-logs")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.VIEW)
def list_call_logs_route(customer_id: int):
    try:
        logs = call_log_service.list_call_logs(customer_id, g.current_user)
        return jsonify({"success": True, "data": [log.to_dict() for log in logs]}), 200
    except CrmError as e:
        return jsonify(e.to_dict()), e.status_code
