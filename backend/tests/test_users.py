"""
Staff account lifecycle tests.

DEACTIVATE: customers move to the acting admin, sessions are revoked.
PERMANENT DELETE: historical references become NULL, the row is removed.
"""

from crm.extensions import db
from crm.models import CallLog, Customer, CustomerAllocation, DailyLimitApproval, SessionToken, User
from crm.permissions import Role
from crm.services import allocation_service, quota_service
from crm.time_utils import business_clock


class TestDeactivate:

    def test_customers_move_to_admin(self, client, login, admin, make_user, make_customer):
        leaver = make_user(Role.EMPLOYEE, name="퇴사자")
        held = [make_customer(leaver) for _ in range(3)]
        leaver_headers = login(leaver)

        resp = client.delete(f"/api/admin/users/{leaver.id}", headers=login(admin))
        assert resp.status_code == 200, resp.json
        assert resp.json["data"]["reassignedCustomers"] == 3
        assert resp.json["message"] == "3명의 고객이 관리자에게 재배분되었습니다."

        for c in held:
            assert db.session.get(Customer, c.id).assigned_user_id == admin.id

        rows = db.session.query(CustomerAllocation).filter_by(from_user_id=leaver.id).all()
        assert len(rows) == 3
        assert {r.reason for r in rows} == {"직원 삭제로 인한 자동 재배분 (퇴사자)"}
        assert all(r.to_user_id == admin.id for r in rows)

        assert db.session.get(User, leaver.id).is_active is False
        assert db.session.query(SessionToken).filter_by(user_id=leaver.id, is_revoked=False).count() == 0
        assert client.get("/api/auth/me", headers=leaver_headers).status_code == 401

    def test_nothing_to_reassign(self, client, login, admin, make_user):
        leaver = make_user(Role.EMPLOYEE)

        resp = client.delete(f"/api/admin/users/{leaver.id}", headers=login(admin))
        assert resp.status_code == 200
        assert resp.json["message"] == "재배분할 고객이 없습니다."

    def test_ceo_and_self_protected(self, client, login, admin, ceo):
        headers = login(admin)

        resp = client.delete(f"/api/admin/users/{ceo.id}", headers=headers)
        assert resp.status_code == 403
        assert resp.json["error"] == "CEO 계정은 삭제할 수 없습니다."

        resp = client.delete(f"/api/admin/users/{admin.id}", headers=headers)
        assert resp.status_code == 403
        assert resp.json["error"] == "본인 계정은 삭제할 수 없습니다."

    def test_head_cannot_remove_admin(self, client, login, head, admin):
        resp = client.delete(f"/api/admin/users/{admin.id}", headers=login(head))
        assert resp.status_code == 403
        assert db.session.get(User, admin.id).is_active is True

    def test_employee_cannot_remove_users(self, client, login, employee, make_user):
        peer = make_user(Role.EMPLOYEE)
        resp = client.delete(f"/api/admin/users/{peer.id}", headers=login(employee))
        assert resp.status_code == 403


class TestPermanentDelete:

    def test_references_become_null(self, client, login, admin, make_user, make_customer, log_call):
        leaver = make_user(Role.EMPLOYEE)
        c = make_customer(None)
        allocation_service.allocate([c.id], leaver.id, admin)
        log_call(c, leaver)
        quota_service.approve(leaver.id, admin, business_clock().today())
        db.session.commit()

        resp = client.delete(f"/api/admin/users/{leaver.id}?permanent=true", headers=login(admin))
        assert resp.status_code == 200, resp.json
        assert resp.json["data"]["permanent"] is True

        assert db.session.get(User, leaver.id) is None
        customer = db.session.get(Customer, c.id)
        assert customer.assigned_user_id is None
        assert customer.assigned_at is None

        row = db.session.query(CustomerAllocation).filter_by(customer_id=c.id).one()
        assert row.to_user_id is None
        assert row.allocated_by_id == admin.id
        assert db.session.query(CallLog).filter_by(customer_id=c.id).one().user_id is None

        approval = db.session.query(DailyLimitApproval).one()
        assert approval.user_id is None
        assert approval.approved_by_id == admin.id

    def test_unknown_user(self, client, login, admin):
        resp = client.delete("/api/admin/users/999999?permanent=true", headers=login(admin))
        assert resp.status_code == 404


class TestRoles:

    def test_change_role(self, client, login, admin, make_user):
        emp = make_user(Role.EMPLOYEE)

        resp = client.patch(f"/api/admin/users/{emp.id}/role", json={"role": "TEAM_LEADER"}, headers=login(admin))
        assert resp.status_code == 200
        assert db.session.get(User, emp.id).role == "TEAM_LEADER"

    def test_only_ceo_grants_ceo(self, client, login, admin, ceo, make_user):
        emp = make_user(Role.EMPLOYEE)

        resp = client.patch(f"/api/admin/users/{emp.id}/role", json={"role": "CEO"}, headers=login(admin))
        assert resp.status_code == 403

        resp = client.patch(f"/api/admin/users/{emp.id}/role", json={"role": "CEO"}, headers=login(ceo))
        assert resp.status_code == 200

    def test_head_cannot_grant_above_own_rank(self, client, login, head, make_user):
        emp = make_user(Role.EMPLOYEE, department=head.department)
        headers = login(head)

        resp = client.patch(f"/api/admin/users/{emp.id}/role", json={"role": "ADMIN"}, headers=headers)
        assert resp.status_code == 403
        assert db.session.get(User, emp.id).role == "EMPLOYEE"

        resp = client.patch(f"/api/admin/users/{emp.id}/role", json={"role": "TEAM_LEADER"}, headers=headers)
        assert resp.status_code == 200

    def test_cannot_change_own_role(self, client, login, admin):
        resp = client.patch(f"/api/admin/users/{admin.id}/role", json={"role": "EMPLOYEE"}, headers=login(admin))
        assert resp.status_code == 403

    def test_cannot_demote_to_pending(self, client, login, admin, make_user):
        emp = make_user(Role.EMPLOYEE)
        resp = client.patch(f"/api/admin/users/{emp.id}/role", json={"role": "PENDING"}, headers=login(admin))
        assert resp.status_code == 400

    def test_approve_pending_signup(self, client, login, admin, make_user):
        pending = make_user(Role.PENDING)
        headers = login(admin)

        resp = client.post(f"/api/admin/users/{pending.id}/approve", json={}, headers=headers)
        assert resp.status_code == 200, resp.json
        assert resp.json["data"]["role"] == "EMPLOYEE"

        resp = client.post(f"/api/admin/users/{pending.id}/approve", json={}, headers=headers)
        assert resp.status_code == 409

    def test_listing_scoped_for_head(self, client, login, head, make_user):
        inside = make_user(Role.EMPLOYEE, department=head.department)
        make_user(Role.EMPLOYEE, department="영업2본부")

        resp = client.get("/api/admin/users", headers=login(head))
        assert resp.status_code == 200
        assert {u["id"] for u in resp.json["data"]} == {head.id, inside.id}
