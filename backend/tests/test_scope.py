"""
View scope tests.

Verifies:
- ADMIN/CEO see every customer
- HEAD sees customers held by their department
- TEAM_LEADER sees customers held by their team
- EMPLOYEE sees only their own customers
- Pagination totals are computed after scoping
"""

from crm.extensions import db
from crm.models import Customer, User
from crm.permissions import Role
from crm.services import customer_service, scope_service


def _visible_ids(user):
    return {
        c.id for c in db.session.query(Customer).filter(scope_service.customer_scope(user)).all()
    }


class TestCustomerScope:

    def test_admin_sees_everything(self, admin, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        owned = make_customer(emp)
        pooled = make_customer(None)

        assert _visible_ids(admin) == {owned.id, pooled.id}

    def test_head_sees_department(self, make_user, make_customer):
        head = make_user(Role.HEAD, department="1본부")
        same = make_user(Role.EMPLOYEE, department="1본부")
        other = make_user(Role.EMPLOYEE, department="2본부")
        a = make_customer(same)
        make_customer(other)
        make_customer(None)

        assert _visible_ids(head) == {a.id}

    def test_team_leader_sees_team(self, make_user, make_team, make_customer):
        team = make_team()
        other_team = make_team()
        leader = make_user(Role.TEAM_LEADER, team=team)
        member = make_user(Role.EMPLOYEE, team=team)
        outsider = make_user(Role.EMPLOYEE, team=other_team)
        own = make_customer(leader)
        mine = make_customer(member)
        make_customer(outsider)

        assert _visible_ids(leader) == {own.id, mine.id}

    def test_employee_sees_own_only(self, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        peer = make_user(Role.EMPLOYEE)
        mine = make_customer(emp)
        make_customer(peer)

        assert _visible_ids(emp) == {mine.id}

    def test_head_without_department_sees_own(self, make_user, make_customer):
        head = make_user(Role.HEAD)
        peer = make_user(Role.EMPLOYEE)
        mine = make_customer(head)
        make_customer(peer)

        assert _visible_ids(head) == {mine.id}

    def test_pagination_total_counts_scoped_rows(self, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        peer = make_user(Role.EMPLOYEE)
        for _ in range(5):
            make_customer(emp)
        for _ in range(7):
            make_customer(peer)

        rows, total = customer_service.list_customers(emp, page=2, limit=2)
        assert total == 5
        assert len(rows) == 2
        assert all(c.assigned_user_id == emp.id for c in rows)

    def test_public_listing_visible_to_everyone(self, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        public = make_customer(None, is_public=True)

        rows, total = customer_service.list_customers(emp, is_public=True)
        assert total == 1
        assert rows[0].id == public.id


class TestUserScope:

    def test_user_listing_scope(self, make_user):
        head = make_user(Role.HEAD, department="1본부")
        same = make_user(Role.EMPLOYEE, department="1본부")
        make_user(Role.EMPLOYEE, department="2본부")
        emp = make_user(Role.EMPLOYEE)

        head_ids = {u.id for u in db.session.query(User).filter(scope_service.user_scope(head))}
        emp_ids = {u.id for u in db.session.query(User).filter(scope_service.user_scope(emp))}

        assert head_ids == {head.id, same.id}
        assert emp_ids == {emp.id}


class TestScopedRoutes:

    def test_out_of_scope_customer_is_404(self, client, login, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        peer = make_user(Role.EMPLOYEE)
        theirs = make_customer(peer)

        resp = client.get(f"/api/customers/{theirs.id}", headers=login(emp))
        assert resp.status_code == 404

    def test_listing_returns_pagination(self, client, login, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        for _ in range(3):
            make_customer(emp)

        resp = client.get("/api/customers?limit=2", headers=login(emp))
        assert resp.status_code == 200
        assert len(resp.json["data"]) == 2
        assert resp.json["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
