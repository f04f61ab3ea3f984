"""
Boarding House Portal — Flask + SQLite (Single File)

How to run:
1) Install:        pip install -e .
2) Configure:      copy .env.example to .env (Google login is optional)
3) Start server:   python boarding.py
4) Open browser:   http://127.0.0.1:5000

Features:
- Local accounts (hashed passwords) and "Continue with Google"
- Guest browsing of the room catalogue
- Booking form that reserves one room of a type and records the payment
- Payment history for members, payment report for administrators
- Administration of room inventory and user roles

CLI (see `flask --app boarding --help`): init-db, seed, create-admin.
"""
from __future__ import annotations

import logging
import os
import secrets
import sqlite3
from datetime import date, datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import click
import requests
from dotenv import load_dotenv
from flask import (
    Flask,
    abort,
    flash,
    g,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from werkzeug.security import check_password_hash, generate_password_hash

from google_oauth import GoogleOAuthError, GoogleOAuthProvider

load_dotenv()

log = logging.getLogger(__name__)

# ---------------------------
# Config
# ---------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

app = Flask(__name__)
app.config.update(
    SECRET_KEY=os.environ.get("FLASK_SECRET_KEY", "dev-secret-change-me"),
    DATABASE_PATH=os.environ.get("DATABASE_PATH", os.path.join(BASE_DIR, "boarding.db")),
    GOOGLE_CLIENT_ID=os.environ.get("GOOGLE_CLIENT_ID", ""),
    GOOGLE_CLIENT_SECRET=os.environ.get("GOOGLE_CLIENT_SECRET", ""),
    GOOGLE_REDIRECT_URI=os.environ.get(
        "GOOGLE_REDIRECT_URI", "http://localhost:5000/auth/google/callback"
    ),
    DISPLAY_TIMEZONE=os.environ.get("DISPLAY_TIMEZONE", "Asia/Jakarta"),
    PERMANENT_SESSION_LIFETIME=timedelta(days=1),
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    CSRF_ENABLED=os.environ.get("CSRF_ENABLED", "1") != "0",
)

ROLES = ("user", "admin")
MAX_BOOKING_MONTHS = 12
GUEST = {"user_id": None, "username": "Guest", "role": "guest"}
CSRF_FIELD = "csrf_token"
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

# ---------------------------
# Database helpers
# ---------------------------

def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def get_db() -> sqlite3.Connection:
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE_PATH"])
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.create_function("casefold", 1, _casefold, deterministic=True)
    return g.db

@app.teardown_appcontext
def close_db(exception: Exception | None):
    db = g.pop("db", None)
    if db is not None:
        db.close()

SCHEMA_SQL = r"""
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password TEXT NOT NULL DEFAULT '',
    first_name TEXT,
    last_name TEXT,
    email TEXT UNIQUE,
    dob DATE,
    phone_number TEXT,
    role TEXT NOT NULL DEFAULT 'user' CHECK(role IN ('user','admin')),
    google_id TEXT UNIQUE,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS room_types (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_type TEXT UNIQUE NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    price INTEGER NOT NULL CHECK(price >= 0),
    available_count INTEGER NOT NULL DEFAULT 0 CHECK(available_count >= 0)
);

CREATE TABLE IF NOT EXISTS payments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    room_type TEXT NOT NULL,
    duration_months INTEGER NOT NULL DEFAULT 1 CHECK(duration_months >= 1),
    move_in_date DATE,
    amount INTEGER NOT NULL DEFAULT 0 CHECK(amount >= 0),
    paid_at TIMESTAMP NOT NULL,
    FOREIGN KEY(user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_payments_user ON payments(user_id, paid_at);
"""


def init_db() -> None:
    db = get_db()
    db.executescript(SCHEMA_SQL)
    db.commit()

# ---------------------------
# Templates (Jinja via render_template_string)
# ---------------------------
BASE = r"""
{% set title = title or 'Boarding House' %}
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{{ title }}</title>
    <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css" rel="stylesheet">
    <link href="https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.5.2/css/all.min.css" rel="stylesheet">
  </head>
  <body class="bg-light">
    <nav class="navbar navbar-expand-lg navbar-dark bg-dark mb-4">
      <div class="container">
        <a class="navbar-brand" href="{{ url_for('dashboard') }}">🏠 Boarding House</a>
        <div class="d-flex align-items-center">
          {% if viewer %}
            <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('rooms') }}">Room Types</a>
            <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('available_rooms') }}">Available</a>
            {% if viewer.role == 'admin' %}
              <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('admin_rooms') }}">Manage Rooms</a>
              <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('admin_users') }}">Users</a>
              <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('admin_payments') }}">Reports</a>
            {% elif viewer.role == 'user' %}
              <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('payments') }}">Payments</a>
            {% endif %}
            {% if viewer.role != 'guest' %}
              <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('profile') }}">Profile</a>
            {% endif %}
            <span class="badge rounded-circle bg-warning text-dark me-2 p-2">{{ viewer.username[:1]|upper }}</span>
            <a class="btn btn-sm btn-warning" href="{{ url_for('logout') }}">Logout</a>
          {% else %}
            <a class="btn btn-sm btn-outline-light me-2" href="{{ url_for('login') }}">Login</a>
            <a class="btn btn-sm btn-warning" href="{{ url_for('register') }}">Register</a>
          {% endif %}
        </div>
      </div>
    </nav>

    <main class="container">
      {% with messages = get_flashed_messages() %}
        {% if messages %}
          <div class="alert alert-info">{{ messages|join('\n') }}</div>
        {% endif %}
      {% endwith %}
      {{ content|safe }}
    </main>
    <script src="https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/js/bootstrap.bundle.min.js"></script>
  </body>
</html>
"""

ERROR_BODY = r"""
<div class="card shadow-sm"><div class="card-body">
  <h3>{{ heading }}</h3>
  <p class="mb-0">{{ message }}</p>
</div></div>
"""


def page(title: str, body: str) -> str:
    return render_template_string(BASE, title=title, content=body, viewer=viewer())


def error_page(heading: str, message: str, status: int = 400):
    body = render_template_string(ERROR_BODY, heading=heading, message=message)
    return page(heading, body), status

# ---------------------------
# Utility
# ---------------------------

def rows_to_list(cur: sqlite3.Cursor) -> List[Dict[str, Any]]:
    return [dict(row) for row in cur.fetchall()]


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def parse_non_negative(value: Optional[str], label: str) -> int:
    try:
        number = int((value or "").strip())
    except ValueError:
        raise ValueError(f"{label} must be a whole number") from None
    if number < 0:
        raise ValueError(f"{label} cannot be negative")
    return number


def parse_duration(value: Optional[str]) -> int:
    if not (value or "").strip():
        return 1
    try:
        months = int(value.strip())
    except ValueError:
        raise ValueError("duration must be a whole number of months") from None
    if not 1 <= months <= MAX_BOOKING_MONTHS:
        raise ValueError(f"duration must be between 1 and {MAX_BOOKING_MONTHS} months")
    return months


def parse_move_in(value: Optional[str]) -> date:
    if not (value or "").strip():
        return date.today()
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValueError("move-in date must look like YYYY-MM-DD") from None


def local_day_bounds(day: date) -> tuple[str, str]:
    """UTC [start, end) of a calendar day in DISPLAY_TIMEZONE, as stored paid_at strings."""
    zone = ZoneInfo(app.config["DISPLAY_TIMEZONE"])
    start = datetime.combine(day, datetime.min.time(), tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=zone)
    return (
        start.astimezone(timezone.utc).isoformat(timespec="seconds"),
        end.astimezone(timezone.utc).isoformat(timespec="seconds"),
    )


def local_today() -> date:
    return datetime.now(ZoneInfo(app.config["DISPLAY_TIMEZONE"])).date()


def to_local(value: str) -> datetime:
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(ZoneInfo(app.config["DISPLAY_TIMEZONE"]))


@app.template_filter("rupiah")
def rupiah(value: Any) -> str:
    """1500000 -> '1.500.000'"""
    return f"{int(value or 0):,}".replace(",", ".")


@app.template_filter("local_date")
def local_date(value: str) -> str:
    return to_local(value).strftime("%d %B %Y")


@app.template_filter("local_time")
def local_time(value: str) -> str:
    return to_local(value).strftime("%H:%M:%S")

# ---------------------------
# Session & access control
# ---------------------------

@app.before_request
def load_current_user():
    g.user = None
    user_id = session.get("user_id")
    if user_id is None:
        return
    row = get_db().execute("SELECT * FROM users WHERE user_id=?", (user_id,)).fetchone()
    if row is None:
        # Account was deleted while the session was alive.
        session.clear()
        return
    g.user = dict(row)


def csrf_token() -> str:
    token = session.get(CSRF_FIELD)
    if not token:
        token = secrets.token_hex(20)
        session[CSRF_FIELD] = token
    return token


app.jinja_env.globals["csrf_token"] = csrf_token


@app.before_request
def check_csrf_token():
    if not app.config["CSRF_ENABLED"] or request.method in SAFE_METHODS:
        return None
    expected = session.get(CSRF_FIELD)
    supplied = request.form.get(CSRF_FIELD)
    if not expected or not supplied or not secrets.compare_digest(expected, supplied):
        log.warning("Rejected %s %s without a valid CSRF token", request.method, request.path)
        return error_page("Form expired", "Please reload the page and submit the form again.")
    return None


def viewer() -> Optional[Dict[str, Any]]:
    user = g.get("user")
    if user is not None:
        return user
    if session.get("guest"):
        return GUEST
    return None


def login_user(user_id: int) -> None:
    session.clear()
    session["user_id"] = user_id
    session.permanent = True


def login_required(view):
    """Logged-in users and guests."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if viewer() is None:
            return redirect(url_for("login"))
        return view(*args, **kwargs)
    return wrapped


def member_required(view):
    """Logged-in users only; guests are sent to the login page."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return redirect(url_for("login"))
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None or g.user["role"] != "admin":
            abort(403)
        return view(*args, **kwargs)
    return wrapped

# ---------------------------
# Error pages
# ---------------------------

@app.errorhandler(403)
def forbidden(e):
    return error_page("Access denied", "This page is only available to administrators.", 403)


@app.errorhandler(404)
def not_found(e):
    return error_page("Not found", "The page you asked for does not exist.", 404)


@app.errorhandler(500)
def server_error(e):
    log.error("Server error on %s %s", request.method, request.path)
    return error_page("Server error", "Something went wrong on our side. Please try again.", 500)

# ---------------------------
# Login / registration
# ---------------------------
LOGIN_BODY = r"""
<div class="row justify-content-center">
  <div class="col-md-5">
    <div class="card shadow-sm"><div class="card-body">
      <h3 class="mb-3">Login</h3>
      {% if error %}<div class="alert alert-danger">{{ error }}</div>{% endif %}
      <form method="post" action="{{ url_for('login') }}">
        <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
        <div class="mb-3"><input class="form-control" name="username" placeholder="Username" value="{{ username }}" required></div>
        <div class="mb-3"><input class="form-control" name="password" type="password" placeholder="Password" required></div>
        <button class="btn btn-primary w-100" type="submit">Login</button>
      </form>
      <hr>
      {% if google_enabled %}
        <a class="btn btn-outline-danger w-100 mb-2" href="{{ url_for('google_login') }}"><i class="fab fa-google"></i> Continue with Google</a>
      {% endif %}
      <a class="btn btn-outline-secondary w-100 mb-2" href="{{ url_for('guest') }}">Browse as guest</a>
      <p class="text-center mb-0">No account yet? <a href="{{ url_for('register') }}">Register</a></p>
    </div></div>
  </div>
</div>
"""

REGISTER_BODY = r"""
<div class="row justify-content-center">
  <div class="col-md-6">
    <div class="card shadow-sm"><div class="card-body">
      <h3 class="mb-3">Register</h3>
      {% if error %}<div class="alert alert-danger">{{ error }}</div>{% endif %}
      <form method="post" action="{{ url_for('register') }}" class="row g-3">
        <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
        <div class="col-md-6"><input class="form-control" name="username" placeholder="Username" value="{{ form.username }}" required></div>
        <div class="col-md-6"><input class="form-control" name="password" type="password" placeholder="Password" required></div>
        <div class="col-md-6"><input class="form-control" name="first_name" placeholder="First name" value="{{ form.first_name }}"></div>
        <div class="col-md-6"><input class="form-control" name="last_name" placeholder="Last name" value="{{ form.last_name }}"></div>
        <div class="col-md-6"><input class="form-control" name="email" type="email" placeholder="Email" value="{{ form.email }}"></div>
        <div class="col-md-6"><input class="form-control" name="phone_number" placeholder="Phone number" value="{{ form.phone_number }}"></div>
        <div class="col-md-6"><label class="form-label">Date of birth</label><input class="form-control" name="dob" type="date" value="{{ form.dob }}"></div>
        <div class="col-12"><button class="btn btn-primary w-100" type="submit">Create account</button></div>
      </form>
      <p class="text-center mt-3 mb-0">Already registered? <a href="{{ url_for('login') }}">Login</a></p>
    </div></div>
  </div>
</div>
"""


def render_login(error: str = "", username: str = "") -> str:
    body = render_template_string(
        LOGIN_BODY,
        error=error,
        username=username,
        google_enabled=bool(app.config["GOOGLE_CLIENT_ID"]),
    )
    return page("Login", body)


def render_register(error: str = "", form: Optional[Dict[str, str]] = None) -> str:
    body = render_template_string(REGISTER_BODY, error=error, form=form or {})
    return page("Register", body)


@app.route("/")
def index():
    return redirect(url_for("login"))


@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        return render_login()

    username = request.form.get("username", "").strip()
    password = request.form.get("password", "")
    user = get_db().execute("SELECT * FROM users WHERE username=?", (username,)).fetchone()
    # OAuth-only accounts have an empty password and cannot log in here.
    if user is None or not user["password"] or not check_password_hash(user["password"], password):
        log.info("Failed login for %r", username)
        return render_login("Incorrect username or password.", username), 400

    login_user(user["user_id"])
    log.info("User %s logged in", username)
    return redirect(url_for("dashboard"))


@app.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "GET":
        return render_register()

    form = {
        key: request.form.get(key, "").strip()
        for key in ("username", "first_name", "last_name", "email", "dob", "phone_number")
    }
    password = request.form.get("password", "")
    if not form["username"] or not password:
        return render_register("Username and password are required.", form), 400
    if form["dob"]:
        try:
            date.fromisoformat(form["dob"])
        except ValueError:
            return render_register("Date of birth must look like YYYY-MM-DD.", form), 400

    db = get_db()
    email = form["email"] or None
    taken = db.execute(
        "SELECT 1 FROM users WHERE username=? OR email=?", (form["username"], email)
    ).fetchone()
    if taken:
        return render_register("Username or email is already registered.", form), 400

    cur = db.execute(
        "INSERT INTO users(username, password, first_name, last_name, email, dob, phone_number, role)"
        " VALUES(?,?,?,?,?,?,?,?)",
        (
            form["username"],
            generate_password_hash(password),
            form["first_name"],
            form["last_name"],
            email,
            form["dob"] or None,
            form["phone_number"] or None,
            "user",
        ),
    )
    db.commit()
    log.info("Registered user %s", form["username"])
    login_user(cur.lastrowid)
    return redirect(url_for("dashboard"))


@app.route("/guest")
def guest():
    session.clear()
    session["guest"] = True
    return redirect(url_for("dashboard"))


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("login"))

# ---------------------------
# Google login
# ---------------------------

def google_provider() -> Optional[GoogleOAuthProvider]:
    if not app.config["GOOGLE_CLIENT_ID"]:
        return None
    return GoogleOAuthProvider(
        app.config["GOOGLE_CLIENT_ID"],
        app.config["GOOGLE_CLIENT_SECRET"],
        app.config["GOOGLE_REDIRECT_URI"],
    )


def find_or_create_oauth_user(profile: Dict[str, Any]) -> int:
    """Resolve a Google profile to a portal account and return its user_id.

    Lookup order is google_id, then email (linking the Google identity to
    the existing account), then a fresh ``user`` account.
    """
    db = get_db()
    google_id = str(profile["sub"])
    email = (profile.get("email") or "").strip() or None

    row = db.execute("SELECT user_id FROM users WHERE google_id=?", (google_id,)).fetchone()
    if row:
        return row["user_id"]

    if email:
        row = db.execute("SELECT user_id FROM users WHERE email=?", (email,)).fetchone()
        if row:
            db.execute("UPDATE users SET google_id=? WHERE user_id=?", (google_id, row["user_id"]))
            db.commit()
            log.info("Linked Google account to existing user %s", row["user_id"])
            return row["user_id"]

    base = (email.split("@")[0] if email else "") or f"user_{google_id[:8]}"
    username = base
    attempt = 0
    while db.execute("SELECT 1 FROM users WHERE username=?", (username,)).fetchone():
        attempt += 1
        # dewi -> dewi_abcdef -> dewi_abcdef_2 -> ...
        username = f"{base}_{google_id[:6]}" + (f"_{attempt}" if attempt > 1 else "")

    cur = db.execute(
        "INSERT INTO users(username, password, first_name, last_name, email, phone_number, role, google_id)"
        " VALUES(?,?,?,?,?,?,?,?)",
        (
            username,
            "",
            profile.get("given_name") or "",
            profile.get("family_name") or "",
            email,
            None,
            "user",
            google_id,
        ),
    )
    db.commit()
    log.info("Created user %s from Google profile", username)
    return cur.lastrowid


@app.route("/auth/google")
def google_login():
    provider = google_provider()
    if provider is None:
        flash("Google login is not configured.")
        return redirect(url_for("login"))
    state = secrets.token_urlsafe(24)
    session["oauth_state"] = state
    return redirect(provider.get_authorization_url(state))


@app.route("/auth/google/callback")
def google_callback():
    provider = google_provider()
    expected_state = session.pop("oauth_state", None)
    if provider is None:
        flash("Google login is not configured.")
        return redirect(url_for("login"))
    if request.args.get("error"):
        flash("Google login was cancelled.")
        return redirect(url_for("login"))
    code = request.args.get("code")
    if not code or not expected_state or request.args.get("state") != expected_state:
        log.warning("Rejected Google callback with a missing code or mismatched state")
        flash("Google login failed. Please try again.")
        return redirect(url_for("login"))

    try:
        profile = provider.fetch_profile(code)
    except (GoogleOAuthError, requests.RequestException):
        log.exception("Google login failed")
        flash("Google login failed. Please try again.")
        return redirect(url_for("login"))

    try:
        user_id = find_or_create_oauth_user(profile)
    except sqlite3.IntegrityError:
        get_db().rollback()
        log.exception("Could not create an account for Google profile %s", profile.get("sub"))
        flash("Google login failed. Please try again.")
        return redirect(url_for("login"))

    login_user(user_id)
    return redirect(url_for("dashboard"))

# ---------------------------
# Dashboards
# ---------------------------
DASHBOARD_BODY = r"""
<div class="card shadow-sm mb-4"><div class="card-body">
  <h3>Welcome, {{ viewer.username }}</h3>
  <p class="text-muted mb-0">Signed in as {{ viewer.role }}</p>
</div></div>
<div class="row g-3">
  <div class="col-md-4">
    <div class="card shadow-sm"><div class="card-body">
      <h6 class="text-muted">Room types available</h6>
      <div class="display-6">{{ available_types }}</div>
    </div></div>
  </div>
</div>
<div class="mt-4 d-flex gap-2">
  <a class="btn btn-primary" href="{{ url_for('rooms') }}">Browse room types</a>
  <a class="btn btn-secondary" href="{{ url_for('available_rooms') }}">Available rooms</a>
  {% if viewer.role == 'user' %}<a class="btn btn-warning" href="{{ url_for('payments') }}">Payment history</a>{% endif %}
</div>
"""

ADMIN_DASHBOARD_BODY = r"""
<div class="card shadow-sm mb-4"><div class="card-body">
  <h3>Welcome, {{ viewer.username }}</h3>
  <p class="text-muted mb-0">Signed in as {{ viewer.role }}</p>
</div></div>
<div class='row g-3'>
  <div class='col-md-3'>
    <div class='card shadow-sm'><div class='card-body'>
      <h6 class='text-muted'>Room Types</h6>
      <div class='display-6'>{{ stats.room_types }}</div>
    </div></div>
  </div>
  <div class='col-md-3'>
    <div class='card shadow-sm'><div class='card-body'>
      <h6 class='text-muted'>Rooms Available</h6>
      <div class='display-6'>{{ stats.rooms_available }}</div>
    </div></div>
  </div>
  <div class='col-md-3'>
    <div class='card shadow-sm'><div class='card-body'>
      <h6 class='text-muted'>Users</h6>
      <div class='display-6'>{{ stats.users }}</div>
    </div></div>
  </div>
  <div class='col-md-3'>
    <div class='card shadow-sm'><div class='card-body'>
      <h6 class='text-muted'>Payments Today</h6>
      <div class='display-6'>{{ stats.payments_today }}</div>
    </div></div>
  </div>
</div>

<div class='mt-4 d-flex gap-2'>
  <a class='btn btn-primary' href='{{ url_for('admin_rooms') }}'>Manage Rooms</a>
  <a class='btn btn-secondary' href='{{ url_for('admin_users') }}'>Manage Users</a>
  <a class='btn btn-warning' href='{{ url_for('admin_payments') }}'>Payment Report</a>
</div>
"""


@app.route("/dashboard")
@login_required
def dashboard():
    if g.user is not None and g.user["role"] == "admin":
        return redirect(url_for("admin_dashboard"))
    available_types = get_db().execute(
        "SELECT COUNT(*) FROM room_types WHERE available_count > 0"
    ).fetchone()[0]
    body = render_template_string(DASHBOARD_BODY, viewer=viewer(), available_types=available_types)
    return page("Dashboard", body)


def count_payments_on(day: date) -> int:
    start, end = local_day_bounds(day)
    return get_db().execute(
        "SELECT COUNT(*) FROM payments WHERE paid_at >= ? AND paid_at < ?", (start, end)
    ).fetchone()[0]


@app.route("/admin")
@admin_required
def admin_dashboard():
    db = get_db()
    stats = {}
    stats["room_types"] = db.execute("SELECT COUNT(*) FROM room_types").fetchone()[0]
    stats["rooms_available"] = db.execute(
        "SELECT COALESCE(SUM(available_count), 0) FROM room_types"
    ).fetchone()[0]
    stats["users"] = db.execute("SELECT COUNT(*) FROM users").fetchone()[0]
    stats["payments_today"] = count_payments_on(local_today())
    body = render_template_string(ADMIN_DASHBOARD_BODY, viewer=g.user, stats=stats)
    return page("Admin Dashboard", body)

# ---------------------------
# Profile
# ---------------------------
PROFILE_BODY = r"""
<div class="row justify-content-center">
  <div class="col-md-7">
    <div class="card shadow-sm"><div class="card-body">
      <div class="d-flex align-items-center mb-3">
        <span class="badge rounded-circle bg-primary fs-4 me-3 p-3">{{ user.username[:1]|upper }}</span>
        <div>
          <h3 class="mb-0">{{ user.username }}</h3>
          <span class="text-muted">{{ user.role }}</span>
        </div>
      </div>
      <dl class="row">
        <dt class="col-sm-4">Email</dt><dd class="col-sm-8">{{ user.email or 'not set' }}</dd>
        <dt class="col-sm-4">Phone</dt><dd class="col-sm-8">{{ user.phone_number or '-' }}</dd>
      </dl>
      <form method="post" action="{{ url_for('update_profile') }}" class="row g-3">
        <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
        <div class="col-md-6"><label class="form-label">First name</label><input class="form-control" name="first_name" value="{{ user.first_name or '' }}"></div>
        <div class="col-md-6"><label class="form-label">Last name</label><input class="form-control" name="last_name" value="{{ user.last_name or '' }}"></div>
        <div class="col-md-6"><label class="form-label">Email</label><input class="form-control" type="email" name="email" value="{{ user.email or '' }}"></div>
        <div class="col-md-6"><label class="form-label">Phone number</label><input class="form-control" name="phone_number" value="{{ user.phone_number or '' }}"></div>
        <div class="col-12"><button class="btn btn-primary" type="submit">Save changes</button></div>
      </form>
    </div></div>
  </div>
</div>
"""


def render_profile(title: str) -> str:
    return page(title, render_template_string(PROFILE_BODY, user=g.user))


@app.route("/profile", methods=["GET"])
@member_required
def profile():
    if g.user["role"] == "admin":
        return redirect(url_for("admin_profile"))
    return render_profile("Profile")


@app.route("/admin/profile")
@admin_required
def admin_profile():
    return render_profile("Admin Profile")


@app.route("/profile", methods=["POST"])
@member_required
def update_profile():
    db = get_db()
    try:
        db.execute(
            "UPDATE users SET first_name=?, last_name=?, email=?, phone_number=? WHERE user_id=?",
            (
                request.form.get("first_name", "").strip(),
                request.form.get("last_name", "").strip(),
                request.form.get("email", "").strip() or None,
                request.form.get("phone_number", "").strip() or None,
                g.user["user_id"],
            ),
        )
        db.commit()
        flash("Profile updated ✔")
    except sqlite3.IntegrityError:
        db.rollback()
        log.exception("Profile update rejected for user %s", g.user["username"])
        flash("That email is already used by another account.")
    target = "admin_profile" if g.user["role"] == "admin" else "profile"
    return redirect(url_for(target))

# ---------------------------
# Room catalogue
# ---------------------------
ROOM_CARDS = r"""
<div class="d-flex justify-content-between align-items-center mb-3">
  <h3>{{ heading }}</h3>
  {% if searchable %}
  <form method="get" class="d-flex gap-2">
    <input class="form-control" name="search" placeholder="Search room types" value="{{ search }}">
    <button class="btn btn-outline-primary" type="submit">Search</button>
  </form>
  {% endif %}
</div>
<div class="row g-4">
  {% for r in rooms %}
  <div class="col-md-4">
    <div class="card shadow-sm h-100 {{ 'sold-out opacity-75' if r.available_count == 0 }}">
      <img class="card-img-top" src="https://placehold.co/400x250/3498db/ffffff?text={{ r.room_type|urlencode }}" alt="Room {{ r.room_type }}">
      <div class="card-body d-flex flex-column">
        <h5>{{ r.room_type }}</h5>
        <p class="fw-bold text-primary">Rp {{ r.price|rupiah }} / month</p>
        <p>{{ r.description }}</p>
        <ul class="list-unstyled small text-muted">
          <li><i class="fas fa-check"></i> Standard size</li>
          <li><i class="fas fa-check"></i> Private bathroom</li>
          <li><i class="fas fa-check"></i> AC, wardrobe, study desk, Wi-Fi</li>
        </ul>
        <p class="small">{{ r.status }}{% if r.available_count %} ({{ r.available_count }} left){% endif %}</p>
        <div class="mt-auto">
          {% if is_guest %}
            <a class="btn btn-outline-primary w-100" href="{{ url_for('login') }}">Log in to book</a>
          {% elif r.available_count > 0 %}
            <a class="btn btn-primary w-100" href="{{ url_for('booking_form', room_type=r.room_type) }}">Book now</a>
          {% else %}
            <button class="btn btn-secondary w-100" disabled>Sold Out</button>
          {% endif %}
        </div>
      </div>
    </div>
  </div>
  {% else %}
  <p class="text-center">{{ empty_message }}</p>
  {% endfor %}
</div>
"""


def list_room_types(search: str = "", available_only: bool = False) -> List[Dict[str, Any]]:
    query = "SELECT id, room_type, description, price, available_count FROM room_types"
    clauses: List[str] = []
    params: List[Any] = []
    if search:
        # casefold() is registered in get_db; LIKE alone only folds ASCII.
        clauses.append(
            "(casefold(room_type) LIKE ? ESCAPE '\\' OR casefold(description) LIKE ? ESCAPE '\\')"
        )
        params += [like_pattern(search.casefold()), like_pattern(search.casefold())]
    if available_only:
        clauses.append("available_count > 0")
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY room_type ASC"

    rooms_ = rows_to_list(get_db().execute(query, params))
    for room in rooms_:
        room["status"] = "Available" if room["available_count"] > 0 else "Sold Out"
    return rooms_


def get_room_type(room_type: str) -> Optional[Dict[str, Any]]:
    row = get_db().execute("SELECT * FROM room_types WHERE room_type=?", (room_type,)).fetchone()
    return dict(row) if row else None


@app.route("/rooms")
@login_required
def rooms():
    search = request.args.get("search", "").strip()
    body = render_template_string(
        ROOM_CARDS,
        heading="Room Types",
        searchable=True,
        search=search,
        rooms=list_room_types(search),
        is_guest=g.user is None,
        empty_message="No room types found.",
    )
    return page("Room Types", body)


@app.route("/rooms/available")
@login_required
def available_rooms():
    body = render_template_string(
        ROOM_CARDS,
        heading="Available Rooms",
        searchable=False,
        search="",
        rooms=list_room_types(available_only=True),
        is_guest=g.user is None,
        empty_message="Sorry, no rooms are available right now.",
    )
    return page("Available Rooms", body)

# ---------------------------
# Booking
# ---------------------------
BOOKING_FORM = r"""
<h3 class="mb-3">Booking Form</h3>
<form method="post" action="{{ url_for('submit_booking') }}" class="card shadow-sm">
  <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
  <div class="card-body row g-3">
    <div class="col-md-6">
      <label class="form-label">Name</label>
      <input class="form-control" value="{{ full_name }}" readonly>
    </div>
    <div class="col-md-6">
      <label class="form-label">Email</label>
      <input class="form-control" value="{{ email }}" readonly>
    </div>
    <div class="col-md-6">
      <label class="form-label">Room type</label>
      <input class="form-control" name="room_type" value="{{ room.room_type }}" readonly>
    </div>
    <div class="col-md-6">
      <label class="form-label">Price</label>
      <input class="form-control" value="Rp {{ room.price|rupiah }} / month" readonly>
    </div>
    <div class="col-md-4">
      <label class="form-label">Booking date</label>
      <input class="form-control" type="date" value="{{ today }}" readonly>
    </div>
    <div class="col-md-4">
      <label class="form-label">Move-in date</label>
      <input class="form-control" type="date" name="move_in_date" value="{{ today }}" required>
    </div>
    <div class="col-md-4">
      <label class="form-label">Duration (months)</label>
      <input class="form-control" type="number" name="duration" value="1" min="1" max="{{ max_months }}" required>
    </div>
    <div class="col-12">
      <button class="btn btn-warning" type="submit">Book &amp; pay</button>
    </div>
  </div>
</form>
"""


@app.route("/booking", methods=["GET"])
@member_required
def booking_form():
    room_type = request.args.get("room_type", "").strip()
    if not room_type:
        return error_page("Error", "A room type is required to book.")
    room = get_room_type(room_type)
    if room is None:
        return error_page("Error", "That room type does not exist.")

    full_name = f"{g.user['first_name'] or ''} {g.user['last_name'] or ''}".strip()
    body = render_template_string(
        BOOKING_FORM,
        room=room,
        full_name=full_name,
        email=g.user["email"] or "",
        today=date.today().isoformat(),
        max_months=MAX_BOOKING_MONTHS,
    )
    return page("Booking", body)


@app.route("/booking", methods=["POST"])
@member_required
def submit_booking():
    room_type = request.form.get("room_type", "").strip()
    try:
        duration = parse_duration(request.form.get("duration"))
        move_in = parse_move_in(request.form.get("move_in_date"))
    except ValueError as e:
        return error_page("Error", f"Invalid booking: {e}.")

    room = get_room_type(room_type)
    if room is None:
        return error_page("Error", "The room you chose is no longer available.")

    db = get_db()
    # Guarded decrement: two concurrent bookings cannot oversell the last room.
    cur = db.execute(
        "UPDATE room_types SET available_count = available_count - 1 WHERE id=? AND available_count > 0",
        (room["id"],),
    )
    if cur.rowcount == 0:
        db.rollback()
        return error_page("Error", "The room you chose is no longer available.")
    db.execute(
        "INSERT INTO payments(user_id, room_type, duration_months, move_in_date, amount, paid_at)"
        " VALUES(?,?,?,?,?,?)",
        (
            g.user["user_id"],
            room["room_type"],
            duration,
            move_in.isoformat(),
            room["price"] * duration,
            utcnow(),
        ),
    )
    db.commit()
    log.info("User %s booked %s for %d month(s)", g.user["username"], room["room_type"], duration)
    flash("Booking confirmed ✔")
    return redirect(url_for("payments"))

# ---------------------------
# Payment history & report
# ---------------------------
PAYMENTS_TABLE = r"""
<div class="d-flex justify-content-between align-items-center mb-3">
  <h3>{{ heading }}</h3>
  {% if show_user %}
  <form method="get" class="d-flex gap-2">
    <input class="form-control" name="search" placeholder="Search username" value="{{ search }}">
    <button class="btn btn-outline-primary" type="submit">Search</button>
  </form>
  {% endif %}
</div>
<div class="table-responsive shadow-sm">
  <table class="table table-striped table-hover align-middle mb-0">
    <thead class="table-dark">
      <tr>
        {% if show_user %}<th>Username</th>{% endif %}
        <th>Date</th><th>Time</th><th>Room type</th><th>Months</th><th>Amount</th>
      </tr>
    </thead>
    <tbody>
      {% for p in payments %}
      <tr>
        {% if show_user %}<td>{{ p.username }}</td>{% endif %}
        <td>{{ p.paid_at|local_date }}</td>
        <td>{{ p.paid_at|local_time }}</td>
        <td>{{ p.room_type }}</td>
        <td>{{ p.duration_months }}</td>
        <td>Rp {{ p.amount|rupiah }}</td>
      </tr>
      {% else %}
      <tr><td colspan="{{ 6 if show_user else 5 }}">No payment records found.</td></tr>
      {% endfor %}
    </tbody>
  </table>
</div>
"""


@app.route("/payments")
@member_required
def payments():
    payments_ = rows_to_list(get_db().execute(
        "SELECT paid_at, room_type, duration_months, amount FROM payments"
        " WHERE user_id=? ORDER BY paid_at DESC, id DESC",
        (g.user["user_id"],),
    ))
    body = render_template_string(
        PAYMENTS_TABLE, heading="Payment History", show_user=False, search="", payments=payments_
    )
    return page("Payment History", body)


@app.route("/admin/payments")
@admin_required
def admin_payments():
    search = request.args.get("search", "").strip()
    query = """
        SELECT p.paid_at, p.room_type, p.duration_months, p.amount, u.username
        FROM payments p
        JOIN users u ON p.user_id = u.user_id
    """
    params: List[Any] = []
    if search:
        query += " WHERE casefold(u.username) LIKE ? ESCAPE '\\'"
        params.append(like_pattern(search.casefold()))
    query += " ORDER BY p.paid_at DESC, p.id DESC"

    body = render_template_string(
        PAYMENTS_TABLE,
        heading="Payment Report",
        show_user=True,
        search=search,
        payments=rows_to_list(get_db().execute(query, params)),
    )
    return page("Payment Report", body)

# ---------------------------
# User administration
# ---------------------------
USERS_BODY = r"""
{% macro user_table(users, target_role, button_label, button_class, empty_message) %}
<div class="table-responsive shadow-sm mb-4">
  <table class="table table-striped table-hover align-middle mb-0">
    <thead class="table-dark">
      <tr><th>Username</th><th>Name</th><th>Email</th><th>Phone</th><th>Actions</th></tr>
    </thead>
    <tbody>
      {% for u in users %}
      <tr>
        <td>{{ u.username }}</td>
        <td>{{ u.first_name or '' }} {{ u.last_name or '' }}</td>
        <td>{{ u.email or '' }}</td>
        <td>{{ u.phone_number or '-' }}</td>
        <td class="d-flex gap-2">
          <form method="post" action="{{ url_for('update_user_role') }}">
            <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
            <input type="hidden" name="username" value="{{ u.username }}">
            <input type="hidden" name="new_role" value="{{ target_role }}">
            <button class="btn btn-sm {{ button_class }}" type="submit">{{ button_label }}</button>
          </form>
          <form method="post" action="{{ url_for('delete_user') }}">
            <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
            <input type="hidden" name="username" value="{{ u.username }}">
            <button class="btn btn-sm btn-outline-danger" type="submit">Delete</button>
          </form>
        </td>
      </tr>
      {% else %}
      <tr><td colspan="5">{{ empty_message }}</td></tr>
      {% endfor %}
    </tbody>
  </table>
</div>
{% endmacro %}

<h3 class="mb-3">Administrators</h3>
{{ user_table(admins, 'user', 'Make user', 'btn-warning', 'No administrators registered.') }}
<h3 class="mb-3">Users</h3>
{{ user_table(users, 'admin', 'Make admin', 'btn-primary', 'No regular users registered.') }}
"""


def users_by_role(role: str) -> List[Dict[str, Any]]:
    return rows_to_list(get_db().execute(
        "SELECT user_id, username, first_name, last_name, email, phone_number, role"
        " FROM users WHERE role=? ORDER BY username",
        (role,),
    ))


@app.route("/admin/users")
@admin_required
def admin_users():
    body = render_template_string(USERS_BODY, admins=users_by_role("admin"), users=users_by_role("user"))
    return page("Users", body)


@app.route("/admin/users/role", methods=["POST"])
@admin_required
def update_user_role():
    username = request.form.get("username", "").strip()
    new_role = request.form.get("new_role", "").strip()
    if new_role not in ROLES:
        return error_page("Error", "Invalid role.")
    db = get_db()
    cur = db.execute("UPDATE users SET role=? WHERE username=?", (new_role, username))
    db.commit()
    if cur.rowcount:
        log.info("Admin %s set role of %s to %s", g.user["username"], username, new_role)
        flash(f"{username} is now {new_role} ✔")
    else:
        flash("No such user.")
    return redirect(url_for("admin_users"))


@app.route("/admin/users/delete", methods=["POST"])
@admin_required
def delete_user():
    username = request.form.get("username", "").strip()
    if username == g.user["username"]:
        flash("You cannot delete your own account.")
        return redirect(url_for("admin_users"))
    db = get_db()
    cur = db.execute("DELETE FROM users WHERE username=?", (username,))
    db.commit()
    if cur.rowcount:
        log.info("Admin %s deleted user %s", g.user["username"], username)
        flash(f"{username} deleted ✖")
    else:
        flash("No such user.")
    return redirect(url_for("admin_users"))

# ---------------------------
# Room administration
# ---------------------------
ADMIN_ROOMS_BODY = r"""
<h3 class="mb-3">Manage Rooms</h3>

<form method="post" action="{{ url_for('add_room_type') }}" class="card shadow-sm mb-4">
  <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
  <div class="card-body row g-3 align-items-end">
    <div class="col-md-3">
      <label class="form-label">Room type</label>
      <input class="form-control" name="room_type" required>
    </div>
    <div class="col-md-2">
      <label class="form-label">Price / month</label>
      <input class="form-control" type="number" name="price" min="0" required>
    </div>
    <div class="col-md-4">
      <label class="form-label">Description</label>
      <input class="form-control" name="description">
    </div>
    <div class="col-md-1">
      <label class="form-label">Available</label>
      <input class="form-control" type="number" name="available_count" min="0" value="0" required>
    </div>
    <div class="col-md-2">
      <button class="btn btn-primary w-100" type="submit">Add Room Type</button>
    </div>
  </div>
</form>

<div class="row g-4">
  {% for r in rooms %}
  <div class="col-md-4">
    <div class="card shadow-sm h-100">
      <img class="card-img-top" src="https://placehold.co/400x250/3498db/ffffff?text={{ r.room_type|urlencode }}" alt="Room {{ r.room_type }}">
      <div class="card-body">
        <h5>{{ r.room_type }}</h5>
        <p class="fw-bold text-primary">Rp {{ r.price|rupiah }} / month</p>
        <p>{{ r.description }}</p>
        <div class="border-top pt-3 d-flex gap-2 justify-content-center">
          <form method="post" action="{{ url_for('update_room_type') }}" class="d-flex gap-2 align-items-center">
            <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
            <input type="hidden" name="id" value="{{ r.id }}">
            <label for="available-{{ r.id }}" class="fw-semibold">Available:</label>
            <input class="form-control form-control-sm" style="width: 70px" type="number" id="available-{{ r.id }}" name="available_count" value="{{ r.available_count }}" min="0">
            <button class="btn btn-sm btn-primary" type="submit">Update</button>
          </form>
          <form method="post" action="{{ url_for('delete_room_type') }}">
            <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
            <input type="hidden" name="id" value="{{ r.id }}">
            <button class="btn btn-sm btn-outline-danger" type="submit">Delete</button>
          </form>
        </div>
      </div>
    </div>
  </div>
  {% else %}
  <p class="text-center">No room types yet. Add a new room type.</p>
  {% endfor %}
</div>
"""


@app.route("/admin/rooms")
@admin_required
def admin_rooms():
    body = render_template_string(ADMIN_ROOMS_BODY, rooms=list_room_types())
    return page("Manage Rooms", body)


@app.route("/admin/rooms/add", methods=["POST"])
@admin_required
def add_room_type():
    room_type = request.form.get("room_type", "").strip()
    description = request.form.get("description", "").strip()
    if not room_type:
        flash("Room type is required")
        return redirect(url_for("admin_rooms"))
    try:
        price = parse_non_negative(request.form.get("price"), "Price")
        available = parse_non_negative(request.form.get("available_count"), "Available count")
    except ValueError as e:
        flash(f"Error: {e}")
        return redirect(url_for("admin_rooms"))

    db = get_db()
    try:
        db.execute(
            "INSERT INTO room_types(room_type, price, description, available_count) VALUES(?,?,?,?)",
            (room_type, price, description, available),
        )
        db.commit()
        log.info("Admin %s added room type %s", g.user["username"], room_type)
        flash("Room type added ✔")
    except sqlite3.IntegrityError:
        db.rollback()
        log.exception("Could not add room type %s", room_type)
        flash(f"Error: room type {room_type!r} already exists")
    return redirect(url_for("admin_rooms"))


@app.route("/admin/rooms/update", methods=["POST"])
@admin_required
def update_room_type():
    try:
        room_id = parse_non_negative(request.form.get("id"), "Room id")
        available = parse_non_negative(request.form.get("available_count"), "Available count")
    except ValueError as e:
        flash(f"Error: {e}")
        return redirect(url_for("admin_rooms"))
    db = get_db()
    cur = db.execute("UPDATE room_types SET available_count=? WHERE id=?", (available, room_id))
    db.commit()
    if cur.rowcount:
        log.info("Admin %s set availability of room type %s to %d", g.user["username"], room_id, available)
        flash("Availability updated ✔")
    else:
        flash("No such room type.")
    return redirect(url_for("admin_rooms"))


@app.route("/admin/rooms/delete", methods=["POST"])
@admin_required
def delete_room_type():
    room_id = request.form.get("id", "").strip()
    db = get_db()
    cur = db.execute("DELETE FROM room_types WHERE id=?", (room_id,))
    db.commit()
    if cur.rowcount:
        log.info("Admin %s deleted room type %s", g.user["username"], room_id)
        flash("Room type deleted ✖")
    else:
        flash("No such room type.")
    return redirect(url_for("admin_rooms"))

# ---------------------------
# CLI
# ---------------------------
SAMPLE_ROOM_TYPES = [
    ("Standard", "Single room with a shared kitchen.", 1500000, 5),
    ("Deluxe", "Larger room with a balcony.", 2000000, 3),
    ("Suite", "Two-room suite with a kitchenette.", 3000000, 0),
]


@app.cli.command("init-db")
def init_db_command():
    """Create the tables if they do not exist."""
    init_db()
    click.echo("Initialized the database.")


@app.cli.command("seed")
def seed_command():
    """Insert sample room types into an empty catalogue."""
    init_db()
    db = get_db()
    if db.execute("SELECT COUNT(*) FROM room_types").fetchone()[0]:
        click.echo("Room types already present, nothing to seed.")
        return
    db.executemany(
        "INSERT INTO room_types(room_type, description, price, available_count) VALUES(?,?,?,?)",
        SAMPLE_ROOM_TYPES,
    )
    db.commit()
    click.echo(f"Seeded {len(SAMPLE_ROOM_TYPES)} room types.")


@app.cli.command("create-admin")
@click.argument("username")
@click.password_option()
def create_admin_command(username: str, password: str):
    """Create an administrator, or promote an existing user."""
    init_db()
    db = get_db()
    row = db.execute("SELECT user_id FROM users WHERE username=?", (username,)).fetchone()
    if row:
        db.execute("UPDATE users SET role='admin' WHERE user_id=?", (row["user_id"],))
        click.echo(f"Promoted {username} to admin.")
    else:
        db.execute(
            "INSERT INTO users(username, password, role) VALUES(?,?,?)",
            (username, generate_password_hash(password), "admin"),
        )
        click.echo(f"Created admin {username}.")
    db.commit()

# ---------------------------
# Main
# ---------------------------
if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    with app.app_context():
        init_db()
    log.info("Boarding House Portal running → http://127.0.0.1:5000")
    log.info("Seed sample rooms with → flask --app boarding seed")
    app.run(debug=True, port=int(os.environ.get("PORT", "5000")))
