"""
Allocation engine tests.

Covers direct allocation, reclaim, the public pool release and the admin
pool listing. Every holder change must leave exactly one ledger row.
"""

from crm.extensions import db
from crm.models import AuditLog, Customer, CustomerAllocation
from crm.permissions import Role
from crm.services import allocation_service, ledger_service


def _ledger(customer_id):
    return (
        db.session.query(CustomerAllocation)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerAllocation.id)
        .all()
    )


class TestReclaim:

    def test_reclaim_all_scenario(self, client, login, admin, make_user, make_customer):
        u = make_user(Role.EMPLOYEE, name="직원U")
        customers = [make_customer(u) for _ in range(7)]

        resp = client.post(
            "/api/admin/reclaim-customers",
            json={"fromUserId": u.id, "reclaimAll": True},
            headers=login(admin),
        )
        assert resp.status_code == 200, resp.json
        assert resp.json["data"]["reclaimedCount"] == 7

        for c in customers:
            assert db.session.get(Customer, c.id).assigned_user_id is None

        rows = db.session.query(CustomerAllocation).filter_by(from_user_id=u.id).all()
        assert len(rows) == 7
        assert all(r.to_user_id is None for r in rows)
        assert all(r.reason == "관리자(관리자)가 DB 회수 - 전체 회수" for r in rows)

    def test_reclaim_selected(self, admin, make_user, make_customer):
        u = make_user(Role.EMPLOYEE)
        keep = make_customer(u)
        take = make_customer(u)

        data, entry = allocation_service.reclaim(u.id, admin, customer_ids=[take.id])
        assert data["reclaimedCount"] == 1
        assert entry.action == "RECLAIM"
        assert db.session.get(Customer, keep.id).assigned_user_id == u.id
        assert db.session.get(Customer, take.id).assigned_user_id is None

    def test_reclaim_nothing_is_error(self, client, login, admin, make_user):
        u = make_user(Role.EMPLOYEE)

        resp = client.post(
            "/api/admin/reclaim-customers",
            json={"fromUserId": u.id, "reclaimAll": True},
            headers=login(admin),
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "회수할 고객이 없습니다."

    def test_reclaim_requires_ids_or_all(self, client, login, admin, make_user):
        u = make_user(Role.EMPLOYEE)

        resp = client.post(
            "/api/admin/reclaim-customers",
            json={"fromUserId": u.id},
            headers=login(admin),
        )
        assert resp.status_code == 400
        assert "customerIds" in resp.json["details"]

    def test_reclaim_forbidden_for_head(self, client, login, head, make_user, make_customer):
        u = make_user(Role.EMPLOYEE, department=head.department)
        make_customer(u)

        resp = client.post(
            "/api/admin/reclaim-customers",
            json={"fromUserId": u.id, "reclaimAll": True},
            headers=login(head),
        )
        assert resp.status_code == 403


class TestDirectAllocation:

    def test_allocate_moves_and_records(self, client, login, admin, make_user, make_customer):
        target = make_user(Role.EMPLOYEE)
        previous = make_user(Role.EMPLOYEE)
        pooled = make_customer(None)
        held = make_customer(previous)

        resp = client.post(
            "/api/admin/allocation",
            json={"customerIds": [pooled.id, held.id], "toUserId": target.id, "reason": "신규 배치"},
            headers=login(admin),
        )
        assert resp.status_code == 200, resp.json
        assert resp.json["allocated"] == 2

        assert [(r.from_user_id, r.to_user_id) for r in _ledger(pooled.id)] == [(None, target.id)]
        assert [(r.from_user_id, r.to_user_id) for r in _ledger(held.id)] == [(previous.id, target.id)]
        assert _ledger(held.id)[0].reason == "신규 배치"

    def test_same_holder_writes_no_row(self, admin, make_user, make_customer):
        target = make_user(Role.EMPLOYEE)
        c = make_customer(target)

        data, _ = allocation_service.allocate([c.id], target.id, admin)
        assert data["allocated"] == 0
        assert data["matched"] == 1
        assert _ledger(c.id) == []

    def test_inactive_target_rejected(self, client, login, admin, make_user, make_customer):
        target = make_user(Role.EMPLOYEE, is_active=False)
        c = make_customer(None)

        resp = client.post(
            "/api/admin/allocation",
            json={"customerIds": [c.id], "toUserId": target.id},
            headers=login(admin),
        )
        assert resp.status_code == 400
        assert db.session.get(Customer, c.id).assigned_user_id is None

    def test_missing_target_and_missing_customers(self, client, login, admin, make_user):
        target = make_user(Role.EMPLOYEE)
        headers = login(admin)

        resp = client.post("/api/admin/allocation", json={"customerIds": [1], "toUserId": 999999}, headers=headers)
        assert resp.status_code == 404

        resp = client.post("/api/admin/allocation", json={"customerIds": [999999], "toUserId": target.id}, headers=headers)
        assert resp.status_code == 404

    def test_employee_cannot_allocate(self, client, login, employee, make_user, make_customer):
        c = make_customer(None)

        resp = client.post(
            "/api/admin/allocation",
            json={"customerIds": [c.id], "toUserId": employee.id},
            headers=login(employee),
        )
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "customers:allocate"

    def test_validation_reports_fields(self, client, login, admin):
        resp = client.post("/api/admin/allocation", json={"customerIds": "x"}, headers=login(admin))
        assert resp.status_code == 400
        assert set(resp.json["details"]) == {"customerIds", "toUserId"}


class TestPublicPool:

    def test_mark_public_only_own_or_unassigned(self, client, login, admin, make_user, make_customer):
        peer = make_user(Role.EMPLOYEE)
        mine = make_customer(admin)
        theirs = make_customer(peer)

        resp = client.patch(
            "/api/customers/mark-public",
            json={"customerIds": [mine.id, theirs.id], "isPublic": True},
            headers=login(admin),
        )
        assert resp.status_code == 403
        assert db.session.get(Customer, mine.id).is_public is False

    def test_mark_and_unmark(self, client, login, admin, make_customer):
        a = make_customer(admin)
        b = make_customer(None)
        headers = login(admin)

        resp = client.patch(
            "/api/customers/mark-public",
            json={"customerIds": [a.id, b.id], "isPublic": True},
            headers=headers,
        )
        assert resp.status_code == 200, resp.json
        assert resp.json["count"] == 2
        for cid in (a.id, b.id):
            customer = db.session.get(Customer, cid)
            assert customer.is_public is True
            assert customer.assigned_user_id is None
        assert [(r.from_user_id, r.to_user_id) for r in _ledger(a.id)] == [(admin.id, None)]
        assert _ledger(a.id)[0].reason == "공개DB로 전환"

        resp = client.patch(
            "/api/customers/mark-public",
            json={"customerIds": [a.id, b.id], "isPublic": False},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json["count"] == 2
        assert db.session.get(Customer, a.id).is_public is False
        assert len(_ledger(a.id)) == 1

    def test_batches_commit_independently(self, app, admin, make_customer, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOCATION_BATCH_SIZE", 2)
        customers = [make_customer(None) for _ in range(5)]

        data, entry = allocation_service.set_public([c.id for c in customers], True, admin)
        assert data["count"] == 5
        assert entry.action == "MARK_PUBLIC"
        assert db.session.query(Customer).filter(Customer.is_public.is_(True)).count() == 5

    def test_employee_cannot_mark_public(self, client, login, employee, make_customer):
        c = make_customer(employee)

        resp = client.patch(
            "/api/customers/mark-public",
            json={"customerIds": [c.id], "isPublic": True},
            headers=login(employee),
        )
        assert resp.status_code == 403


class TestUnallocatedAndHistory:

    def test_unallocated_listing(self, client, login, admin, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        pooled = make_customer(None, site="강남")
        admin_held = make_customer(admin, site="강남")
        make_customer(emp, site="강남")
        make_customer(None, is_public=True, site="강남")
        make_customer(None, site="판교")

        resp = client.get("/api/admin/unallocated-customers?site=강남", headers=login(admin))
        assert resp.status_code == 200
        assert {c["id"] for c in resp.json["data"]} == {pooled.id, admin_held.id}
        assert resp.json["pagination"]["total"] == 2

    def test_history_labels_admin_pool(self, client, login, admin, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE, name="직원A")
        c = make_customer(None)
        allocation_service.allocate([c.id], emp.id, admin, reason="배정")
        allocation_service.reclaim(emp.id, admin, reclaim_all=True)

        resp = client.get(f"/api/customers/{c.id}/allocation-history", headers=login(admin))
        assert resp.status_code == 200
        history = resp.json["data"]["history"]
        assert len(history) == 2
        assert history[0]["from_user"] == "직원A"
        assert history[0]["to_user"] == ledger_service.ADMIN_POOL_LABEL
        assert history[1]["from_user"] == ledger_service.ADMIN_POOL_LABEL
        assert history[1]["allocated_by"] == "관리자"

    def test_audit_row_written_after_commit(self, client, login, admin, make_user, make_customer):
        target = make_user(Role.EMPLOYEE)
        c = make_customer(None)

        client.post(
            "/api/admin/allocation",
            json={"customerIds": [c.id], "toUserId": target.id},
            headers=login(admin),
        )
        log = db.session.query(AuditLog).filter_by(action="ALLOCATE_CUSTOMERS").one()
        assert log.user_id == admin.id
        assert log.entity_id == str(c.id)
