"""
Customer intake tests: registration, duplicate warnings, soft delete.
"""

from crm.extensions import db
from crm.models import AuditLog, Customer, CustomerAllocation
from crm.permissions import Role
from crm.services import customer_service


class TestCreateCustomer:

    def test_create_records_holder_and_ledger(self, client, login, employee):
        resp = client.post(
            "/api/customers",
            json={"phone": "010-2468-1357", "grade": "A"},
            headers=login(employee),
        )
        assert resp.status_code == 201, resp.json
        data = resp.json["data"]
        assert data["name"] == "고객_1357"
        assert data["phone"] == "01024681357"
        assert data["assigned_user_id"] == employee.id
        assert data["holder"] == "HELD"
        assert resp.json["duplicateWarning"] is None

        row = db.session.query(CustomerAllocation).filter_by(customer_id=data["id"]).one()
        assert (row.from_user_id, row.to_user_id) == (None, employee.id)
        assert row.reason == customer_service.REASON_NEW

    def test_duplicate_phone_is_warning_not_error(self, client, login, employee, make_customer):
        existing = make_customer(None, phone="01011112222", name="기존")

        resp = client.post(
            "/api/customers",
            json={"phone": "010 1111 2222", "name": "새고객"},
            headers=login(employee),
        )
        assert resp.status_code == 201
        assert [d["id"] for d in resp.json["duplicateWarning"]] == [existing.id]
        assert db.session.query(Customer).filter_by(phone="01011112222").count() == 2

    def test_invalid_payload(self, client, login, employee):
        resp = client.post(
            "/api/customers",
            json={"phone": "12", "email": "nope", "grade": "Z"},
            headers=login(employee),
        )
        assert resp.status_code == 400
        assert set(resp.json["details"]) == {"phone", "email", "grade"}

    def test_assign_to_other_requires_allocate(self, client, login, employee, make_user):
        peer = make_user(Role.EMPLOYEE)

        resp = client.post(
            "/api/customers",
            json={"phone": "01033334444", "assignedUserId": peer.id},
            headers=login(employee),
        )
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "customers:allocate"

    def test_admin_assigns_on_create(self, client, login, admin, make_user):
        emp = make_user(Role.EMPLOYEE)

        resp = client.post(
            "/api/customers",
            json={"phone": "01033334444", "assignedUserId": emp.id},
            headers=login(admin),
        )
        assert resp.status_code == 201
        assert resp.json["data"]["assigned_user_id"] == emp.id
        assert resp.json["data"]["created_by_id"] == admin.id

    def test_pending_user_cannot_create(self, client, login, make_user):
        pending = make_user(Role.PENDING)
        resp = client.post("/api/customers", json={"phone": "01033334444"}, headers=login(pending))
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "customers:create"


class TestDuplicateCheck:

    def test_check_duplicate_ignores_deleted(self, client, login, employee, make_customer):
        live = make_customer(employee, phone="01055556666")
        gone = make_customer(employee, phone="01055556666")
        customer_service.soft_delete(gone.id, employee)

        resp = client.get("/api/customers/check-duplicate?phone=010-5555-6666", headers=login(employee))
        assert resp.status_code == 200
        assert resp.json["data"]["isDuplicate"] is True
        assert [c["id"] for c in resp.json["data"]["customers"]] == [live.id]

    def test_check_duplicate_requires_phone(self, client, login, employee):
        resp = client.get("/api/customers/check-duplicate", headers=login(employee))
        assert resp.status_code == 400


class TestSoftDelete:

    def test_delete_hides_customer(self, client, login, admin, make_customer):
        c = make_customer(admin)
        headers = login(admin)

        resp = client.delete(f"/api/customers/{c.id}", headers=headers)
        assert resp.status_code == 200

        deleted = db.session.get(Customer, c.id)
        assert deleted.is_deleted is True
        assert deleted.deleted_at is not None
        assert client.get(f"/api/customers/{c.id}", headers=headers).status_code == 404

    def test_employee_cannot_delete(self, client, login, employee, make_customer):
        c = make_customer(employee)
        resp = client.delete(f"/api/customers/{c.id}", headers=login(employee))
        assert resp.status_code == 403


class TestBulkDelete:

    def test_admin_bulk_delete_in_batches(self, app, client, login, admin, make_customer, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOCATION_BATCH_SIZE", 2)
        held = [make_customer(admin) for _ in range(3)]
        unassigned = make_customer(None)
        already = make_customer(admin)
        customer_service.soft_delete(already.id, admin)
        ids = [c.id for c in held] + [unassigned.id, already.id]

        resp = client.post("/api/customers/bulk-delete", json={"customerIds": ids}, headers=login(admin))
        assert resp.status_code == 200, resp.json
        assert resp.json["count"] == 4
        assert resp.json["message"] == "4명의 고객을 삭제했습니다."

        for c in held + [unassigned]:
            row = db.session.get(Customer, c.id)
            assert row.is_deleted is True
            assert row.deleted_at is not None

        log = db.session.query(AuditLog).filter_by(action="BULK_DELETE", user_id=admin.id).one()
        assert log.entity_id == ",".join(str(i) for i in ids)
        assert log.changes == {"count": 4}

    def test_peer_customers_block_request(self, client, login, admin, make_user, make_customer):
        peer = make_user(Role.EMPLOYEE)
        mine = make_customer(admin)
        theirs = make_customer(peer)

        resp = client.post(
            "/api/customers/bulk-delete",
            json={"customerIds": [mine.id, theirs.id]},
            headers=login(admin),
        )
        assert resp.status_code == 403
        assert resp.json["error"] == (
            "본인에게 배분된 고객만 삭제할 수 있습니다. 다른 직원 소유 고객 1명이 포함되어 있습니다."
        )
        assert db.session.get(Customer, mine.id).is_deleted is False
        assert db.session.get(Customer, theirs.id).is_deleted is False

    def test_requires_admin_and_ids(self, client, login, admin, employee, make_customer):
        c = make_customer(employee)

        resp = client.post("/api/customers/bulk-delete", json={"customerIds": [c.id]}, headers=login(employee))
        assert resp.status_code == 403
        assert resp.json["error"] == "관리자만 고객 삭제가 가능합니다."

        resp = client.post("/api/customers/bulk-delete", json={"customerIds": []}, headers=login(admin))
        assert resp.status_code == 400
        assert resp.json["error"] == "고객을 1명 이상 선택해주세요."


class TestListing:

    def test_listing_search_by_digits(self, client, login, employee, make_customer):
        target = make_customer(employee, phone="01098761234")
        make_customer(employee, phone="01011110000")

        resp = client.get("/api/customers?search=9876", headers=login(employee))
        assert resp.status_code == 200
        assert [c["id"] for c in resp.json["data"]] == [target.id]
