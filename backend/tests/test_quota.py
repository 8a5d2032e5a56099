"""
Daily quota tests.

limit = base + approvals * base; admins exempt; soft-deleted customers
still count toward the day.
"""

from datetime import date, datetime, timedelta

import pytest

from crm.errors import QuotaExceededError
from crm.extensions import db
from crm.models import DailyLimitApproval
from crm.permissions import Role
from crm.services import customer_service, quota_service
from crm.time_utils import BusinessClock, business_clock, utcnow


def _fill(make_customer, user, count):
    for _ in range(count):
        make_customer(user)


class TestQuotaScenario:

    def test_fifty_first_blocked_until_approval(self, client, login, admin, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        _fill(make_customer, emp, 50)
        headers = login(emp)

        resp = client.post("/api/customers", json={"phone": "010-5555-0051", "name": "51번째"}, headers=headers)
        assert resp.status_code == 403
        assert resp.json["code"] == "QUOTA_EXCEEDED"
        assert resp.json["currentLimit"] == 50
        assert resp.json["remaining"] == 0

        resp = client.post("/api/admin/daily-limit", json={"userId": emp.id}, headers=login(admin))
        assert resp.status_code == 200, resp.json
        assert resp.json["data"]["newLimit"] == 100
        assert resp.json["data"]["approvalCount"] == 1

        resp = client.get("/api/customers/check-daily-limit", headers=headers)
        assert resp.json["data"]["currentLimit"] == 100
        assert resp.json["data"]["remaining"] == 50

        resp = client.post("/api/customers", json={"phone": "010-5555-0051", "name": "51번째"}, headers=headers)
        assert resp.status_code == 201, resp.json


class TestQuotaRules:

    def test_admin_exempt(self, admin, make_customer):
        _fill(make_customer, admin, 55)
        today = business_clock().today()

        current = quota_service.status(admin, today)
        assert current.is_exempt
        assert current.can_register
        quota_service.ensure_can_create(admin, today)

    def test_soft_deleted_still_count(self, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        _fill(make_customer, emp, 50)
        today = business_clock().today()

        first = customer_service.list_customers(emp, limit=1)[0][0]
        customer_service.soft_delete(first.id, emp)

        with pytest.raises(QuotaExceededError):
            quota_service.ensure_can_create(emp, today)

    def test_yesterday_does_not_count(self, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        for _ in range(50):
            make_customer(emp, created_at=utcnow() - timedelta(days=2))

        current = quota_service.status(emp, business_clock().today())
        assert current.today_count == 0
        assert current.can_register

    def test_approvals_ratchet_per_day(self, admin, make_user):
        emp = make_user(Role.EMPLOYEE)
        today = business_clock().today()

        quota_service.approve(emp.id, admin, today)
        quota_service.approve(emp.id, admin, today)
        quota_service.approve(emp.id, admin, today - timedelta(days=1))
        db.session.commit()

        current = quota_service.status(emp, today)
        assert current.approval_count == 2
        assert current.current_limit == 150
        assert db.session.query(DailyLimitApproval).count() == 3

    def test_quota_checked_for_holder_not_creator(self, admin, make_user, make_customer):
        emp = make_user(Role.EMPLOYEE)
        _fill(make_customer, emp, 50)

        with pytest.raises(QuotaExceededError):
            customer_service.create_customer(
                admin, business_clock().today(), phone="01077770000", assigned_user_id=emp.id
            )

    def test_admin_listing_marks_exceeded(self, client, login, admin, make_user, make_customer):
        full = make_user(Role.EMPLOYEE, name="가득참")
        make_user(Role.EMPLOYEE, name="여유")
        _fill(make_customer, full, 50)

        resp = client.get("/api/admin/daily-limit", headers=login(admin))
        assert resp.status_code == 200
        assert [u["id"] for u in resp.json["data"]] == [full.id]
        assert len(resp.json["allUsers"]) == 2

    def test_unknown_user_approval_is_404(self, client, login, admin):
        resp = client.post("/api/admin/daily-limit", json={"userId": 999999}, headers=login(admin))
        assert resp.status_code == 404


class TestBusinessClock:

    def test_day_bounds_are_utc(self):
        clock = BusinessClock("Asia/Seoul")
        start, end = clock.day_bounds(clock.today())
        assert end - start == timedelta(days=1)
        # KST midnight is 15:00 UTC the previous day
        assert start.hour == 15
        assert start.tzinfo is None

    def test_business_date_rolls_at_local_midnight(self):
        clock = BusinessClock("Asia/Seoul")
        late_utc = datetime(2026, 3, 1, 15, 30)
        assert clock.business_date(late_utc) == date(2026, 3, 2)
        assert clock.business_date(datetime(2026, 3, 1, 14, 59)) == date(2026, 3, 1)

    def test_day_bounds_follow_dst(self):
        clock = BusinessClock("America/New_York")
        # clocks spring forward on 2026-03-08
        start, end = clock.day_bounds(date(2026, 3, 8))
        assert start == datetime(2026, 3, 8, 5, 0)
        assert end == datetime(2026, 3, 9, 4, 0)
        assert end - start == timedelta(hours=23)
