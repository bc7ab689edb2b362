"""Racing clients: the partial unique index must admit exactly one booking."""
import threading
from concurrent.futures import ThreadPoolExecutor

from models.reservation import RESERVATION_CONFIRMED
from security.rbac import ROLE_FACULTY, ROLE_STUDENT
from services import engine, ledger, slot_store
from services.errors import ConflictError
from tests.conftest import future, make_user

RACERS = 8


def _race(app, fn, args_list):
    barrier = threading.Barrier(len(args_list))

    def worker(args):
        # each thread gets its own app context, hence its own session
        with app.app_context():
            barrier.wait(timeout=10)
            return fn(*args)

    with ThreadPoolExecutor(max_workers=len(args_list)) as executor:
        return list(executor.map(worker, args_list))


def test_concurrent_bookings_admit_exactly_one(app):
    with app.app_context():
        faculty = make_user("race.prof@uni.edu", ROLE_FACULTY)
        students = [make_user(f"racer{i}@uni.edu", ROLE_STUDENT) for i in range(RACERS)]
        slot_id = slot_store.create_slot(faculty, future(60)).id

    def attempt(student):
        try:
            return "ok", engine.book(slot_id, student).id
        except ConflictError:
            return "conflict", None

    results = _race(app, attempt, [(s,) for s in students])

    outcomes = [r[0] for r in results]
    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == RACERS - 1

    with app.app_context():
        rows = ledger.for_slot(slot_id).all()
        assert len(rows) == 1
        assert rows[0].status == RESERVATION_CONFIRMED
        assert rows[0].id == next(r[1] for r in results if r[0] == "ok")


def test_concurrent_cancels_admit_exactly_one(app):
    with app.app_context():
        faculty = make_user("race.prof2@uni.edu", ROLE_FACULTY)
        student = make_user("canceller@uni.edu", ROLE_STUDENT)
        slot_id = slot_store.create_slot(faculty, future(60)).id
        reservation_id = engine.book(slot_id, student).id

    def attempt():
        try:
            engine.cancel(reservation_id, student)
            return "ok"
        except ConflictError:
            return "conflict"

    outcomes = _race(app, attempt, [() for _ in range(4)])

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 3


def test_rebooking_race_after_cancel(app):
    with app.app_context():
        faculty = make_user("race.prof3@uni.edu", ROLE_FACULTY)
        first = make_user("first@uni.edu", ROLE_STUDENT)
        students = [make_user(f"rebooker{i}@uni.edu", ROLE_STUDENT) for i in range(RACERS)]
        slot_id = slot_store.create_slot(faculty, future(60)).id
        engine.cancel(engine.book(slot_id, first).id, first)

    def attempt(student):
        try:
            engine.book(slot_id, student)
            return "ok"
        except ConflictError:
            return "conflict"

    outcomes = _race(app, attempt, [(s,) for s in students])

    assert outcomes.count("ok") == 1
    with app.app_context():
        statuses = [r.status for r in ledger.for_slot(slot_id)]
        assert statuses.count(RESERVATION_CONFIRMED) == 1
        assert len(statuses) == 2
