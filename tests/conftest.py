"""
Shared test fixtures — in-memory file system, manual timer clock, Flask client.
"""

import pytest

from gtm_dashboard.app import create_app
from gtm_dashboard.persistence import PersistenceManager
from gtm_dashboard.scheduler import TestLeadExpiryScheduler
from gtm_dashboard.store import AggregateStore, RawEventLog
from gtm_dashboard.tracker import Tracker

DATA_FILE = "data/siteCounts.json"


# ── Fake file system ────────────────────────────────────

class MemoryFileSystem:
    """Dict-backed stand-in for LocalFileSystem with switchable failures."""

    def __init__(self):
        self.files = {}
        self.fail_writes = False
        self.fail_copies = False
        self.writes = 0

    def exists(self, path):
        return path in self.files

    def read_text(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def write_text(self, path, text):
        if self.fail_writes:
            raise OSError("No space left on device")
        self.files[path] = text
        self.writes += 1

    def copy(self, src, dst):
        if self.fail_copies:
            raise OSError("Permission denied")
        if src not in self.files:
            raise FileNotFoundError(src)
        self.files[dst] = self.files[src]


# ── Manual clock for expiry timers ──────────────────────

class FakeTimer:
    def __init__(self, clock, interval, function, args=None, kwargs=None):
        self.clock = clock
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.deadline = None
        self.cancelled = False
        self.fired = False

    def start(self):
        self.deadline = self.clock.now + self.interval
        self.clock.timers.append(self)

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Drop-in for threading.Timer; time only moves on advance()."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        return FakeTimer(self, interval, function, args, kwargs)

    def live(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        self.now += seconds
        due = sorted(
            (t for t in self.live() if t.deadline <= self.now),
            key=lambda t: t.deadline,
        )
        for timer in due:
            timer.fired = True
            timer.function(*timer.args, **timer.kwargs)


# ── Fixtures ────────────────────────────────────────────

@pytest.fixture()
def fs():
    return MemoryFileSystem()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def persistence(fs):
    return PersistenceManager(DATA_FILE, fs=fs)


@pytest.fixture()
def store(persistence):
    return AggregateStore(persistence)


@pytest.fixture()
def scheduler(store, clock):
    return TestLeadExpiryScheduler(store, ttl=60, timer_factory=clock)


@pytest.fixture()
def tracker(store, scheduler):
    return Tracker(store, RawEventLog(1000), scheduler)


@pytest.fixture()
def app(fs, clock):
    app = create_app(
        data_file=DATA_FILE,
        fs=fs,
        test_lead_ttl=60,
        timer_factory=clock,
        admin_token="",
        cors_origins=["*"],
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def event(event_type, gtm_id="GTM-1", data=None, **extra):
    payload = {
        "gtmId": gtm_id,
        "siteName": extra.pop("siteName", "Green Reserve"),
        "siteUrl": extra.pop("siteUrl", "https://greenreserve.in"),
        "eventType": event_type,
        "data": data if data is not None else {},
    }
    payload.update(extra)
    return payload
