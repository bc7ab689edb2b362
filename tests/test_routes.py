"""HTTP surface tests using the Flask test client."""
from datetime import datetime, timedelta

import pytest

from models import db
from models.audit_log import AuditLog

PASSWORD = "correct-horse-1"


def signup(app, email, role="student", full_name=None, **extra):
    client = app.test_client()
    resp = client.post("/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "role": role,
        "full_name": full_name,
        **extra,
    })
    assert resp.status_code == 201, resp.get_json()
    client.user_id = resp.get_json()["id"]

    resp = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200
    # echo the csrf cookie back on every request, as the frontend does
    client.environ_base["HTTP_X_CSRF_TOKEN"] = client.get_cookie("csrf_token").value
    return client


def in_future(minutes=90):
    return (datetime.utcnow() + timedelta(minutes=minutes)).replace(microsecond=0).isoformat()


@pytest.fixture
def prof(app):
    return signup(app, "prof.grace@uni.edu", "faculty", "Prof. Grace")


@pytest.fixture
def alice(app):
    return signup(app, "alice@uni.edu", "student", "Alice")


@pytest.fixture
def bob(app):
    return signup(app, "bob@uni.edu", "student", "Bob")


@pytest.fixture
def admin_client(app):
    return signup(app, "dean@uni.edu", "admin", "Dean", admin_code="test-admin-code")


@pytest.fixture
def slot_id(prof):
    resp = prof.post("/slots", json={"start_time": in_future()})
    assert resp.status_code == 201
    return resp.get_json()["id"]


class TestAuth:
    def test_health(self, app):
        assert app.test_client().get("/health").status_code == 200

    def test_register_rejects_bad_input(self, app):
        client = app.test_client()

        assert client.post("/auth/register", json={"email": "nope", "password": PASSWORD}).status_code == 400
        assert client.post("/auth/register", json={"email": "a@uni.edu", "password": "short"}).status_code == 400
        assert client.post(
            "/auth/register", json={"email": "a@uni.edu", "password": PASSWORD, "role": "dean"}
        ).status_code == 400

    def test_duplicate_email(self, app, alice):
        resp = app.test_client().post("/auth/register", json={"email": "alice@uni.edu", "password": PASSWORD})

        assert resp.status_code == 409

    def test_admin_signup_needs_code(self, app):
        resp = app.test_client().post(
            "/auth/register",
            json={"email": "x@uni.edu", "password": PASSWORD, "role": "admin", "admin_code": "guess"},
        )

        assert resp.status_code == 403

    def test_login_and_me(self, prof):
        me = prof.get("/auth/me").get_json()

        assert me["email"] == "prof.grace@uni.edu"
        assert me["role"] == "FACULTY"

    def test_bad_password(self, app, alice):
        resp = app.test_client().post("/auth/login", json={"email": "alice@uni.edu", "password": "wrong-password"})

        assert resp.status_code == 401

    def test_logout_revokes_session(self, alice):
        assert alice.post("/auth/logout").status_code == 200

        assert alice.get("/auth/me").status_code == 401

    def test_anonymous_requests_rejected(self, app):
        client = app.test_client()

        assert client.get("/slots?provider_id=1").status_code == 401
        assert client.post("/reservations", json={"slot_id": 1}).status_code == 401


class TestSlotRoutes:
    def test_create_slot(self, prof):
        start = in_future(120)

        resp = prof.post("/slots", json={"start_time": start})

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["start_time"] == start
        assert datetime.fromisoformat(body["end_time"]) - datetime.fromisoformat(start) == timedelta(minutes=15)
        assert body["is_booked"] is False

    def test_create_slot_in_past(self, prof):
        past = (datetime.utcnow() - timedelta(hours=1)).isoformat()

        resp = prof.post("/slots", json={"start_time": past})

        assert resp.status_code == 400
        assert "past" in resp.get_json()["error"]

    def test_create_slot_bad_datetime(self, prof):
        assert prof.post("/slots", json={"start_time": "next tuesday"}).status_code == 400
        assert prof.post("/slots", json={}).status_code == 400

    def test_student_cannot_create_slot(self, alice):
        assert alice.post("/slots", json={"start_time": in_future()}).status_code == 403

    def test_list_slots_filters(self, prof, alice):
        first = prof.post("/slots", json={"start_time": in_future(60)}).get_json()["id"]
        second = prof.post("/slots", json={"start_time": in_future(120)}).get_json()["id"]
        alice.post("/reservations", json={"slot_id": second})

        base = f"/slots?provider_id={prof.user_id}"
        all_ids = [s["id"] for s in alice.get(base).get_json()]
        booked = [s["id"] for s in alice.get(base + "&booked=true").get_json()]
        free = [s["id"] for s in alice.get(base + "&booked=false").get_json()]

        assert all_ids == [first, second]
        assert booked == [second]
        assert free == [first]

    def test_list_slots_requires_provider(self, alice):
        assert alice.get("/slots").status_code == 400
        assert alice.get("/slots?provider_id=1&date=tomorrow").status_code == 400

    def test_delete_slot_rules(self, app, prof, alice, slot_id):
        other = signup(app, "prof.other@uni.edu", "faculty")
        assert other.delete(f"/slots/{slot_id}").status_code == 403

        alice.post("/reservations", json={"slot_id": slot_id})
        assert prof.delete(f"/slots/{slot_id}").status_code == 409

    def test_delete_open_slot(self, prof, slot_id):
        assert prof.delete(f"/slots/{slot_id}").status_code == 200
        assert prof.delete(f"/slots/{slot_id}").status_code == 404


class TestReservationRoutes:
    def test_end_to_end_rebooking(self, app, prof, alice, bob, slot_id):
        resp = alice.post("/reservations", json={"slot_id": slot_id, "notes": "Thesis outline"})
        assert resp.status_code == 201
        a_res = resp.get_json()
        assert a_res["status"] == "confirmed"
        assert a_res["notes"] == "Thesis outline"

        resp = bob.post("/reservations", json={"slot_id": slot_id})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "slot already booked"

        resp = alice.post(f"/reservations/{a_res['id']}/cancel")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "cancelled"

        slots = alice.get(f"/slots?provider_id={prof.user_id}").get_json()
        assert slots[0]["is_booked"] is False

        resp = bob.post("/reservations", json={"slot_id": slot_id})
        assert resp.status_code == 201
        b_res = resp.get_json()

        history = prof.get(f"/reservations?slot_id={slot_id}").get_json()
        assert [(r["id"], r["status"]) for r in history] == [
            (a_res["id"], "cancelled"),
            (b_res["id"], "confirmed"),
        ]

        with app.app_context():
            actions = [row.action for row in AuditLog.query.order_by(AuditLog.id).all()]
        assert "RESERVATION_FAIL_ALREADY_BOOKED" in actions
        assert actions.count("RESERVATION_CREATE") == 2
        assert "RESERVATION_CANCEL" in actions

    def test_double_cancel_is_conflict(self, alice, slot_id):
        res_id = alice.post("/reservations", json={"slot_id": slot_id}).get_json()["id"]

        assert alice.post(f"/reservations/{res_id}/cancel").status_code == 200
        assert alice.post(f"/reservations/{res_id}/cancel").status_code == 409

    def test_cancel_authorization(self, alice, bob, admin_client, slot_id):
        res_id = alice.post("/reservations", json={"slot_id": slot_id}).get_json()["id"]

        assert bob.post(f"/reservations/{res_id}/cancel").status_code == 403

        resp = admin_client.post(f"/reservations/{res_id}/cancel")
        assert resp.status_code == 200
        assert resp.get_json()["cancelled_by"] == admin_client.user_id

    def test_book_validation(self, prof, alice):
        assert alice.post("/reservations", json={}).status_code == 400
        assert alice.post("/reservations", json={"slot_id": "7"}).status_code == 400
        assert alice.post("/reservations", json={"slot_id": 999}).status_code == 404

    def test_faculty_cannot_book(self, prof, slot_id):
        assert prof.post("/reservations", json={"slot_id": slot_id}).status_code == 403

    def test_student_promoted_to_admin_still_books_as_student(self, app, alice, slot_id):
        result = app.test_cli_runner().invoke(args=["make-admin", "alice@uni.edu"])
        assert "promoted to ADMIN" in result.output
        assert alice.get("/auth/me").get_json()["role"] == "ADMIN"

        resp = alice.post("/reservations", json={"slot_id": slot_id})

        assert resp.status_code == 201
        assert resp.get_json()["student_id"] == alice.user_id

    def test_booking_started_slot(self, app, alice, slot_id):
        from models.slot import Slot

        with app.app_context():
            slot = db.session.get(Slot, slot_id)
            slot.start_time = datetime.utcnow() - timedelta(minutes=5)
            slot.end_time = slot.start_time + timedelta(minutes=15)
            db.session.commit()

        resp = alice.post("/reservations", json={"slot_id": slot_id})

        assert resp.status_code == 400

    def test_reservation_visibility(self, prof, alice, bob, slot_id):
        res_id = alice.post("/reservations", json={"slot_id": slot_id}).get_json()["id"]

        assert alice.get(f"/reservations/{res_id}").status_code == 200
        assert prof.get(f"/reservations/{res_id}").status_code == 200
        assert bob.get(f"/reservations/{res_id}").status_code == 404
        assert bob.get(f"/reservations?slot_id={slot_id}").get_json() == []

    def test_my_and_provider_listings(self, prof, alice, slot_id):
        res_id = alice.post("/reservations", json={"slot_id": slot_id}).get_json()["id"]

        mine = alice.get("/reservations/me").get_json()
        assert [r["id"] for r in mine] == [res_id]
        assert mine[0]["slot"]["start_time"]

        assert [r["id"] for r in prof.get("/reservations/provider").get_json()] == [res_id]
        assert prof.get("/reservations/provider?status=cancelled").get_json() == []
        assert prof.get("/reservations/provider?status=pending").status_code == 400

    def test_admin_listing(self, alice, admin_client, slot_id):
        alice.post("/reservations", json={"slot_id": slot_id})

        assert len(admin_client.get("/admin/reservations").get_json()) == 1
        assert alice.get("/admin/reservations").status_code == 403


class TestNotificationRoutes:
    def test_booking_creates_notifications(self, app, prof, alice, slot_id):
        alice.post("/reservations", json={"slot_id": slot_id})
        assert app.extensions["change_notifier"].wait(timeout=10)

        mine = alice.get("/notifications/me").get_json()
        assert [n["title"] for n in mine] == ["Appointment Confirmed!"]
        assert prof.get("/notifications/me?unread=true").get_json()[0]["title"] == "New Booking"

        note_id = mine[0]["id"]
        assert alice.post(f"/notifications/{note_id}/read").status_code == 200
        assert alice.get("/notifications/me?unread=true").get_json() == []
        assert prof.post(f"/notifications/{note_id}/read").status_code == 404


class TestCsrf:
    def test_login_issues_readable_csrf_cookie(self, alice):
        cookie = alice.get_cookie("csrf_token")

        assert cookie is not None
        assert cookie.http_only is False

    def test_write_needs_matching_header(self, alice, slot_id):
        token = alice.environ_base.pop("HTTP_X_CSRF_TOKEN")

        resp = alice.post("/reservations", json={"slot_id": slot_id})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "CSRF validation failed"

        alice.environ_base["HTTP_X_CSRF_TOKEN"] = "forged-token"
        assert alice.post("/reservations", json={"slot_id": slot_id}).status_code == 403

        alice.environ_base["HTTP_X_CSRF_TOKEN"] = token
        assert alice.post("/reservations", json={"slot_id": slot_id}).status_code == 201

    def test_reads_do_not_need_header(self, prof):
        prof.environ_base.pop("HTTP_X_CSRF_TOKEN")

        assert prof.get("/auth/me").status_code == 200
