import pytest
from werkzeug.security import generate_password_hash

import boarding


@pytest.fixture
def app(tmp_path):
    boarding.app.config.update(
        TESTING=True,
        SECRET_KEY="test",
        DATABASE_PATH=str(tmp_path / "boarding-test.db"),
        GOOGLE_CLIENT_ID="",
        GOOGLE_CLIENT_SECRET="",
        DISPLAY_TIMEZONE="Asia/Jakarta",
        # Forms are posted without tokens here; test_csrf.py turns enforcement on.
        CSRF_ENABLED=False,
        PROPAGATE_EXCEPTIONS=None,
    )
    with boarding.app.app_context():
        boarding.init_db()
    yield boarding.app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def query(app):
    """Run SQL against the test database; returns rows as dicts."""

    def _query(sql, params=()):
        with app.app_context():
            db = boarding.get_db()
            cur = db.execute(sql, params)
            rows = [dict(r) for r in cur.fetchall()]
            db.commit()
            return rows

    return _query


@pytest.fixture
def make_user(app):
    def _make(username="alice", password="secret", role="user", email=None, **extra):
        with app.app_context():
            db = boarding.get_db()
            cur = db.execute(
                "INSERT INTO users(username, password, first_name, last_name, email, phone_number, role, google_id)"
                " VALUES(?,?,?,?,?,?,?,?)",
                (
                    username,
                    generate_password_hash(password) if password else "",
                    extra.get("first_name", ""),
                    extra.get("last_name", ""),
                    email,
                    extra.get("phone_number"),
                    role,
                    extra.get("google_id"),
                ),
            )
            db.commit()
            return cur.lastrowid

    return _make


@pytest.fixture
def make_room(app):
    def _make(room_type="Standard", price=1500000, available_count=2, description="Cozy room"):
        with app.app_context():
            db = boarding.get_db()
            cur = db.execute(
                "INSERT INTO room_types(room_type, description, price, available_count) VALUES(?,?,?,?)",
                (room_type, description, price, available_count),
            )
            db.commit()
            return cur.lastrowid

    return _make


@pytest.fixture
def login(client):
    def _login(username="alice", password="secret"):
        return client.post("/login", data={"username": username, "password": password})

    return _login


@pytest.fixture
def member(make_user, login):
    user_id = make_user("alice", "secret", email="alice@example.com", first_name="Alice", last_name="Smith")
    login("alice", "secret")
    return user_id


@pytest.fixture
def admin(make_user, login):
    user_id = make_user("boss", "hunter2", role="admin", email="boss@example.com")
    login("boss", "hunter2")
    return user_id
