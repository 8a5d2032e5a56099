"""
Spreadsheet allocation tests.

Rows commit individually: a bad row is reported with its spreadsheet row
number and the rest of the batch still goes through.
"""

import io

import pytest
from openpyxl import Workbook

from crm.errors import BusinessRuleError
from crm.extensions import db
from crm.models import Customer, CustomerAllocation
from crm.permissions import Role
from crm.routes.allocation import read_upload_rows
from crm.services import allocation_service


def _xlsx(rows):
    wb = Workbook()
    ws = wb.active
    ws.append(["이름", "전화번호", "이메일", "주소", "담당자"])
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestBulkRows:

    def test_partial_success(self, admin, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        existing = make_customer(None, phone="01099998888", name="기존고객")

        rows = [
            {"name": "신규", "phone": "010-1111-2222", "assignee": emp.email},
            {"name": "기존고객 수정", "phone": "01099998888", "assignee": emp.username},
            {"name": "", "phone": "01033334444"},
            {"name": "잘못된번호", "phone": "12345"},
            {"name": "담당자없음", "phone": "01055556666", "assignee": "ghost@crm.test"},
        ]
        data, entry = allocation_service.bulk_allocate_rows(rows, admin)

        assert data["created"] == 2
        assert data["updated"] == 1
        assert data["allocated"] == 2
        assert data["errors"] == [
            {"row": 4, "error": "이름과 전화번호는 필수입니다."},
            {"row": 5, "error": "올바른 전화번호 형식이 아닙니다."},
            {"row": 6, "error": "담당자 이메일(ghost@crm.test)을 찾을 수 없습니다."},
        ]
        assert entry.action == "BULK_ALLOCATE_CUSTOMERS"

        created = db.session.query(Customer).filter_by(phone="01011112222").one()
        assert created.assigned_user_id == emp.id
        assert db.session.get(Customer, existing.id).name == "기존고객 수정"
        assert db.session.get(Customer, existing.id).assigned_user_id == emp.id

        reasons = {r.reason for r in db.session.query(CustomerAllocation).all()}
        assert reasons == {allocation_service.REASON_BULK_UPLOAD}

        # Unresolved assignee still creates the customer, unassigned
        orphan = db.session.query(Customer).filter_by(phone="01055556666").one()
        assert orphan.assigned_user_id is None

    def test_inactive_assignee_does_not_resolve(self, admin, make_user):
        gone = make_user(Role.EMPLOYEE, is_active=False)

        data, _ = allocation_service.bulk_allocate_rows(
            [{"name": "고객", "phone": "01012120000", "assignee": gone.email}], admin
        )
        assert data["allocated"] == 0
        assert len(data["errors"]) == 1

    def test_empty_and_oversized(self, app, admin, monkeypatch):
        with pytest.raises(BusinessRuleError, match="등록할 데이터가 없습니다"):
            allocation_service.bulk_allocate_rows([{"name": " ", "phone": None}], admin)

        monkeypatch.setitem(app.config, "BULK_UPLOAD_MAX_ROWS", 2)
        rows = [{"name": f"고객{i}", "phone": f"0101000000{i}"} for i in range(3)]
        with pytest.raises(BusinessRuleError, match="최대 2개"):
            allocation_service.bulk_allocate_rows(rows, admin)


class TestUploadRoute:

    def test_xlsx_upload(self, client, login, admin, make_user):
        emp = make_user(Role.EMPLOYEE)
        payload = _xlsx([
            ["홍길동", "010-2222-3333", None, "서울", emp.email],
            [None, None, None, None, None],
            ["이몽룡", "01044445555", "lee@example.com", None, None],
        ])

        resp = client.post(
            "/api/admin/allocation/upload",
            data={"file": (io.BytesIO(payload), "customers.xlsx")},
            content_type="multipart/form-data",
            headers=login(admin),
        )
        assert resp.status_code == 200, resp.json
        assert resp.json["created"] == 2
        assert resp.json["allocated"] == 1
        assert resp.json["errors"] == []

    def test_csv_upload_row_numbers(self, client, login, admin):
        text = "이름,전화번호,이메일,주소,담당자\n김철수,01077778888,,,\n,01000000000,,,\n"
        resp = client.post(
            "/api/admin/allocation/upload",
            data={"file": (io.BytesIO(text.encode("utf-8-sig")), "customers.csv")},
            content_type="multipart/form-data",
            headers=login(admin),
        )
        assert resp.status_code == 200, resp.json
        assert resp.json["created"] == 1
        assert resp.json["errors"] == [{"row": 3, "error": "이름과 전화번호는 필수입니다."}]

    def test_json_rows(self, client, login, admin):
        resp = client.post(
            "/api/admin/allocation/upload",
            json={"rows": [{"name": "박영희", "phone": "01066667777"}]},
            headers=login(admin),
        )
        assert resp.status_code == 200
        assert resp.json["data"]["created"] == 1

    def test_json_list_body(self, client, login, admin):
        resp = client.post(
            "/api/admin/allocation/upload",
            json=[{"name": "박영희", "phone": "01066667777"}],
            headers=login(admin),
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "파일이 없습니다."

    def test_unsupported_file_type(self, client, login, admin):
        resp = client.post(
            "/api/admin/allocation/upload",
            data={"file": (io.BytesIO(b"hello"), "customers.txt")},
            content_type="multipart/form-data",
            headers=login(admin),
        )
        assert resp.status_code == 400

    def test_oversized_file(self, app, client, login, admin, monkeypatch):
        monkeypatch.setitem(app.config, "BULK_UPLOAD_MAX_BYTES", 10)
        resp = client.post(
            "/api/admin/allocation/upload",
            data={"file": (io.BytesIO(b"x" * 100), "customers.csv")},
            content_type="multipart/form-data",
            headers=login(admin),
        )
        assert resp.status_code == 400

    def test_employee_forbidden(self, client, login, employee):
        resp = client.post(
            "/api/admin/allocation/upload",
            json={"rows": [{"name": "박영희", "phone": "01066667777"}]},
            headers=login(employee),
        )
        assert resp.status_code == 403


def test_read_upload_rows_pads_short_rows():
    rows = read_upload_rows("a.csv", "h1,h2\n홍길동,01012345678\n".encode("utf-8"))
    assert rows == [{
        "name": "홍길동",
        "phone": "01012345678",
        "email": None,
        "address": None,
        "assignee": None,
        "row": 2,
    }]
