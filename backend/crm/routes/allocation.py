# Overview: Flask API routes for admin allocation; direct allocation, spreadsheet upload, reclaim and the admin pool.

"""
Allocation Routes

Spreadsheet uploads accept .csv and .xlsx. Columns are positional:
name, phone, email, address, assignee (email or username). Row 1 is a
header and is skipped.
"""

import csv
import io

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_permission, require_roles
from ..errors import CrmError
from ..extensions import db
from ..models import Customer
from ..permissions import Resource, Action, ADMIN_ROLES
from ..services import allocation_service, audit_service
from ..validation import Payload, page_args, pagination_meta


allocation_bp = Blueprint("allocation", __name__, url_prefix="/api/admin")

UPLOAD_COLUMNS = ("name", "phone", "email", "address", "assignee")


class UploadFormatError(Exception):
    pass


def _positional(values, row_number: int) -> dict:
    values = list(values or ())
    row = {column: (values[i] if i < len(values) else None) for i, column in enumerate(UPLOAD_COLUMNS)}
    row["row"] = row_number
    return row


def read_upload_rows(filename: str, payload: bytes) -> list[dict]:
    """Parse an uploaded .csv or .xlsx into row dicts numbered as in the sheet."""
    filename = filename or ""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""

    if ext == "csv":
        try:
            text = payload.decode("utf-8-sig")
        except UnicodeDecodeError:
            # Excel-exported Korean CSVs
            text = payload.decode("cp949")
        reader = csv.reader(io.StringIO(text))
        records = list(reader)
    elif ext in {"xlsx", "xlsm"}:
        from openpyxl import load_workbook
        wb = load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
        sheet = wb.worksheets[0]
        records = list(sheet.iter_rows(values_only=True))
        wb.close()
    else:
        raise UploadFormatError("지원하지 않는 파일 형식입니다. (.csv, .xlsx)")

    return [_positional(values, index + 2) for index, values in enumerate(records[1:])]


@allocation_bp.post("/allocation")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.ALLOCATE)
def allocate_route():
    """
    Allocate customers to one staff member (all or nothing).

    Request body:
    {
        "customerIds": [int, ...],
        "toUserId": int,
        "reason": str (optional),
        "assignedSite": str (optional)
    }
    """
    try:
        p = Payload(request.get_json(silent=True))
        customer_ids = p.int_list("customerIds")
        to_user_id = p.integer("toUserId", minimum=1)
        reason = p.text("reason", required=False, max_length=1000)
        assigned_site = p.text("assignedSite", required=False, max_length=128)
        p.finish()

        data, entry = allocation_service.allocate(
            customer_ids,
            to_user_id,
            g.current_user,
            reason=reason,
            assigned_site=assigned_site,
        )
        audit_service.emit(entry, request)

        return jsonify({
            "success": True,
            "data": data,
            "allocated": data["allocated"],
            "message": f"{data['allocated']}명의 고객을 배분했습니다.",
        }), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to allocate customers")
        return jsonify({"success": False, "error": "Failed to allocate customers"}), 500


@allocation_bp.post("/allocation/upload")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.ALLOCATE)
def upload_allocation_route():
    """
    Bulk create/update/allocate from a spreadsheet.

    Either multipart with "file" (.csv/.xlsx), or JSON {"rows": [{name, phone,
    email?, address?, assignee?}, ...]}. Rows commit individually; failures
    come back per row in "errors".
    """
    try:
        if "file" in request.files:
            file = request.files["file"]
            max_bytes = current_app.config["BULK_UPLOAD_MAX_BYTES"]
            payload = file.read(max_bytes + 1)
            if len(payload) > max_bytes:
                return jsonify({
                    "success": False,
                    "error": f"파일 크기는 {max_bytes // (1024 * 1024)}MB를 초과할 수 없습니다.",
                }), 400
            try:
                rows = read_upload_rows(file.filename, payload)
            except UploadFormatError as e:
                return jsonify({"success": False, "error": str(e)}), 400
            except (ValueError, KeyError, OSError, UnicodeDecodeError, csv.Error):
                current_app.logger.warning("Failed to parse allocation upload", exc_info=True)
                return jsonify({"success": False, "error": "파일을 읽을 수 없습니다."}), 400
        else:
            data = request.get_json(silent=True)
            rows = data.get("rows") if isinstance(data, dict) else None
            if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
                return jsonify({"success": False, "error": "파일이 없습니다."}), 400

        result, entry = allocation_service.bulk_allocate_rows(rows, g.current_user)
        audit_service.emit(entry, request)

        return jsonify({"success": True, "data": result, **result}), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process allocation upload")
        return jsonify({"success": False, "error": "파일 처리 중 오류가 발생했습니다."}), 500


@allocation_bp.post("/reclaim-customers")
@require_auth
@require_roles(*ADMIN_ROLES, message="관리자 권한이 필요합니다.")
def reclaim_route():
    """
    Request body:
    {
        "fromUserId": int,
        "customerIds": [int, ...] (required unless reclaimAll),
        "reclaimAll": bool
    }
    """
    try:
        p = Payload(request.get_json(silent=True))
        from_user_id = p.integer("fromUserId", minimum=1)
        reclaim_all = p.flag("reclaimAll", default=False)
        customer_ids = p.int_list("customerIds", required=False)
        p.finish()

        data, entry = allocation_service.reclaim(
            from_user_id,
            g.current_user,
            customer_ids=customer_ids,
            reclaim_all=reclaim_all,
        )
        audit_service.emit(entry, request)

        return jsonify({
            "success": True,
            "data": data,
            "message": f"{data['fromUser']}님의 고객 {data['reclaimedCount']}명을 관리자 DB로 회수했습니다.",
        }), 200

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reclaim customers")
        return jsonify({"success": False, "error": "고객 회수 중 오류가 발생했습니다."}), 500


@allocation_bp.get("/unallocated-customers")
@require_auth
@require_permission(Resource.CUSTOMERS, Action.ALLOCATE)
def unallocated_customers_route():
    try:
        page, limit = page_args(request.args, default_limit=50)
        query = allocation_service.unallocated_query(site=request.args.get("site") or None)
        total = query.count()
        rows = (
            query.order_by(Customer.created_at.desc(), Customer.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return jsonify({
            "success": True,
            "data": [c.to_dict() for c in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list unallocated customers")
        return jsonify({"success": False, "error": "Internal server error"}), 500
