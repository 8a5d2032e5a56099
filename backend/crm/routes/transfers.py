# Overview: Flask API routes for transfer-request review; listing and approve/reject.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_roles
from ..errors import CrmError
from ..extensions import db
from ..models.allocation import TRANSFER_STATUSES, TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED
from ..permissions import TRANSFER_APPROVER_ROLES
from ..services import audit_service, transfer_request_service
from ..validation import Payload, page_args, pagination_meta


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/admin/transfer-requests")


@transfers_bp.get("")
@require_auth
@require_roles(*TRANSFER_APPROVER_ROLES, message="승인 권한이 없습니다.")
def list_transfer_requests_route():
    status = (request.args.get("status") or "").upper() or None
    if status and status not in TRANSFER_STATUSES:
        return jsonify({"success": False, "error": "유효하지 않은 상태입니다."}), 400

    try:
        page, limit = page_args(request.args)
        rows, total = transfer_request_service.list_requests(status=status, page=page, limit=limit)
        return jsonify({
            "success": True,
            "data": [r.to_dict() for r in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list transfer requests")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@transfers_bp.patch("/<int:request_id>/approve")
@require_auth
@require_roles(*TRANSFER_APPROVER_ROLES, message="승인 권한이 없습니다.")
def decide_transfer_request_route(request_id: int):
    """
    Approve or reject a PENDING transfer request.

    Request body:
    {
        "status": "APPROVED" | "REJECTED",
        "rejectedReason": str (required when REJECTED)
    }

    Returns:
        200: processed
        400: invalid status or missing rejection reason
        404: request not found
        409: already processed, or the customer changed hands since the request
    """
    try:
        p = Payload(request.get_json(silent=True))
        status = p.choice("status", (TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED))
        rejected_reason = p.text("rejectedReason", required=False, max_length=1000)
        p.finish()

        transfer, entry = transfer_request_service.decide(
            request_id, status, g.current_user, rejected_reason=rejected_reason
        )
        audit_service.emit(entry, request)

        message = (
            "담당자 변경이 승인되었습니다."
            if status == TRANSFER_STATUS_APPROVED
            else "담당자 변경 요청이 반려되었습니다."
        )
        return jsonify({"success": True, "data": transfer.to_dict(), "message": message}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process transfer request")
        return jsonify({"success": False, "error": "요청 처리 중 오류가 발생했습니다."}), 500
