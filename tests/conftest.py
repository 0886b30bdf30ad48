"""
Shared pytest fixtures for the SOP Desk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - timers: Manual timer registry driving the autosave buffer (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant / member: Pre-created organization rows
    - document: A draft SOPDocument dict owned by ``tenant``
"""

import pytest

from sopdesk import create_app
from sopdesk.models import db as _db
from sopdesk.models.auth import Member, Tenant
from sopdesk.services import sop_lifecycle
from sopdesk.services.sop_autosave import make_app_autosave


class ManualTimer:
    """threading.Timer stand-in that only fires when the test says so."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """Run the callback as the real timer thread would, unless cancelled."""
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.function(*self.args, **self.kwargs)


class ManualTimers:
    """Registry of ManualTimer instances created by one autosave buffer."""

    def __init__(self):
        self.created: list[ManualTimer] = []

    def factory(self, interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args=args, kwargs=kwargs)
        self.created.append(timer)
        return timer

    @property
    def live(self) -> list[ManualTimer]:
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def elapse(self):
        """Let the quiet period pass: every live timer fires."""
        for timer in list(self.live):
            timer.fire()


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    from sopdesk.config import TestingConfig

    TestingConfig.SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TestingConfig.SOP_STORAGE_ROOT = str(tmp_path_factory.mktemp("sop-files"))
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def timers(app):
    """Fresh autosave buffer per test whose timers never fire on their own."""
    registry = ManualTimers()
    make_app_autosave(app, timer_factory=registry.factory)
    return registry


@pytest.fixture()
def autosave(app, timers):
    return app.extensions["sop_autosave"]


@pytest.fixture()
def storage(app):
    return app.extensions["sop_storage"]


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organization fixtures ────────────────────────────────────────────────


def make_tenant(slug: str, name: str | None = None) -> Tenant:
    t = Tenant(name=name or slug.title(), slug=slug)
    _db.session.add(t)
    _db.session.commit()
    return t


def make_member(tenant_id: int, email: str, *, full_name: str | None = None, status: str = "active") -> Member:
    m = Member(
        tenant_id=tenant_id,
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        status=status,
    )
    _db.session.add(m)
    _db.session.commit()
    return m


@pytest.fixture()
def tenant():
    return make_tenant("riverside-pharmacy", "Riverside Pharmacy")


@pytest.fixture()
def other_tenant():
    return make_tenant("hilltop-pharmacy", "Hilltop Pharmacy")


@pytest.fixture()
def member(tenant):
    return make_member(tenant.id, "alice@riverside.test", full_name="Alice Abbott")


@pytest.fixture()
def document(tenant, member):
    """A draft document at version 0 owned by ``tenant``."""
    return sop_lifecycle.create_document(
        tenant.id,
        "Controlled drugs handling",
        description="Receipt, storage and destruction of CDs",
        created_by=member.id,
    )


@pytest.fixture()
def make_buffer():
    """Build a standalone AutosaveBuffer on manual timers: (buffer, timers)."""
    from sopdesk.services.sop_autosave import AutosaveBuffer

    def _make(save_fn, **kwargs):
        registry = ManualTimers()
        return AutosaveBuffer(save_fn, timer_factory=registry.factory, **kwargs), registry

    return _make
