import re

import pytest

TOKEN_RE = re.compile(rb'name="csrf_token" value="([0-9a-f]+)"')


@pytest.fixture
def csrf_app(app):
    app.config["CSRF_ENABLED"] = True
    return app


def _token(client, path):
    match = TOKEN_RE.search(client.get(path).data)
    assert match, f"no csrf_token field on {path}"
    return match.group(1).decode()


def test_forms_carry_a_token(client, csrf_app):
    assert TOKEN_RE.search(client.get("/login").data)
    assert TOKEN_RE.search(client.get("/register").data)


def test_post_without_token_is_rejected(client, csrf_app, make_user, query):
    make_user("alice", "secret")
    resp = client.post("/login", data={"username": "alice", "password": "secret"})
    assert resp.status_code == 400
    assert b"Form expired" in resp.data
    with client.session_transaction() as sess:
        assert "user_id" not in sess


def test_post_with_wrong_token_is_rejected(client, csrf_app, make_user):
    make_user("alice", "secret")
    _token(client, "/login")
    resp = client.post("/login", data={"username": "alice", "password": "secret", "csrf_token": "0" * 40})
    assert resp.status_code == 400


def test_login_with_token(client, csrf_app, make_user):
    make_user("alice", "secret")
    token = _token(client, "/login")
    resp = client.post("/login", data={"username": "alice", "password": "secret", "csrf_token": token})
    assert resp.headers["Location"].endswith("/dashboard")


def test_admin_mutation_needs_token(client, csrf_app, make_user, query):
    make_user("boss", "hunter2", role="admin")
    make_user("carol", "pw")
    client.post("/login", data={"username": "boss", "password": "hunter2", "csrf_token": _token(client, "/login")})

    resp = client.post("/admin/users/delete", data={"username": "carol"})
    assert resp.status_code == 400
    assert len(query("SELECT * FROM users WHERE username='carol'")) == 1

    token = _token(client, "/admin/users")
    client.post("/admin/users/delete", data={"username": "carol", "csrf_token": token})
    assert query("SELECT * FROM users WHERE username='carol'") == []
