from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestingConfig
from models import db
from models.user import User
from security.rbac import Actor, ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT
from utils.seed import get_role, seed_roles


@pytest.fixture
def app(tmp_path):
    """App bound to a throwaway SQLite file so threads can share it."""

    class FileDBConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "facultyslot-test.db")

    app = create_app(FileDBConfig)
    with app.app_context():
        db.create_all()
        seed_roles()

    yield app

    # let queued observer deliveries finish before the schema goes away
    app.extensions["change_notifier"].shutdown()

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


def future(minutes=60):
    return datetime.utcnow() + timedelta(minutes=minutes)


def make_user(email, role, full_name=None):
    """Create a user directly (no password flow) and return its Actor."""
    user = User(email=email, password_hash="not-a-real-hash", full_name=full_name)
    user.roles.append(get_role(role))
    db.session.add(user)
    db.session.commit()
    return Actor(user.id, role)


@pytest.fixture
def faculty(ctx):
    return make_user("prof.ada@uni.edu", ROLE_FACULTY, "Prof. Ada")


@pytest.fixture
def other_faculty(ctx):
    return make_user("prof.alan@uni.edu", ROLE_FACULTY, "Prof. Alan")


@pytest.fixture
def student_a(ctx):
    return make_user("alice@uni.edu", ROLE_STUDENT, "Alice")


@pytest.fixture
def student_b(ctx):
    return make_user("bob@uni.edu", ROLE_STUDENT, "Bob")


@pytest.fixture
def admin(ctx):
    return make_user("admin@uni.edu", ROLE_ADMIN, "Admin")
