import json

import pytest

from gtm_dashboard.store import AggregateStore, RawEventLog, SiteAggregate

from conftest import DATA_FILE


class RecordingPersistence:
    def __init__(self):
        self.saved = []

    def save(self, snapshot):
        self.saved.append(snapshot)
        return True

    def load(self):
        return {}


# ── SiteAggregate ────────────────────────────────────────

def test_conversion_rate_guards_zero_visitors():
    assert SiteAggregate("GTM-1", test_leads=3, leads=2).conversion_rate == "0.0"


@pytest.mark.parametrize(
    "leads, visitors, expected",
    [(0, 10, "0.0"), (1, 3, "33.3"), (2, 3, "66.7"), (1, 1, "100.0"), (5, 2, "250.0")],
)
def test_conversion_rate_has_one_decimal(leads, visitors, expected):
    assert SiteAggregate("GTM-1", leads=leads, visitors=visitors).conversion_rate == expected


def test_to_dict_uses_dashboard_keys():
    out = SiteAggregate("GTM-1", "Green Reserve", "https://x.in", visitors=4, leads=1).to_dict()
    assert out["siteId"] == "GTM-1"
    assert out["pageViews"] == 0
    assert out["testLeads"] == 0
    assert out["validationFailures"] == 0
    assert out["conversionRate"] == "25.0"
    assert "lastUpdated" in out


def test_from_dict_is_permissive():
    agg = SiteAggregate.from_dict("GTM-1", {"visitors": "7", "leads": None, "conversionRate": "99.9"})
    assert agg.visitors == 7
    assert agg.leads == 0
    assert agg.site_name == ""
    assert agg.conversion_rate == "0.0"


# ── AggregateStore ───────────────────────────────────────

def test_new_site_is_persisted_immediately():
    persistence = RecordingPersistence()
    store = AggregateStore(persistence)
    store.get_or_create("GTM-1", "Green Reserve", "https://x.in")
    assert len(persistence.saved) == 1
    assert "GTM-1" in persistence.saved[0]


def test_existing_site_is_not_recreated():
    persistence = RecordingPersistence()
    store = AggregateStore(persistence)
    first = store.get_or_create("GTM-1")
    assert store.get_or_create("GTM-1") is first
    assert len(persistence.saved) == 1


def test_metadata_last_write_wins_but_blank_never_erases():
    store = AggregateStore()
    store.get_or_create("GTM-1", "Old Name", "https://old.in")
    store.get_or_create("GTM-1", "New Name", "")
    agg = store.get("GTM-1")
    assert agg.site_name == "New Name"
    assert agg.site_url == "https://old.in"


def test_apply_adds_deltas_and_touches_timestamp():
    store = AggregateStore()
    agg = store.get_or_create("GTM-1")
    agg.last_updated = "2000-01-01T00:00:00+00:00"
    store.apply("GTM-1", {"visitors": 1, "page_views": 1})
    store.apply("GTM-1", {"visitors": 1, "page_views": 1})
    assert agg.visitors == 2
    assert agg.page_views == 2
    assert agg.last_updated != "2000-01-01T00:00:00+00:00"


def test_apply_creates_unknown_site():
    store = AggregateStore()
    store.apply("GTM-9", {"button_clicks": 1})
    assert store.get("GTM-9").button_clicks == 1


def test_apply_rejects_decrements_and_unknown_counters():
    store = AggregateStore()
    store.get_or_create("GTM-1")
    with pytest.raises(ValueError):
        store.apply("GTM-1", {"leads": -1})
    with pytest.raises(KeyError):
        store.apply("GTM-1", {"bogus": 1})


def test_expire_test_leads_only_resets_test_leads():
    store = AggregateStore()
    store.apply("GTM-1", {"test_leads": 2, "leads": 1})
    assert store.expire_test_leads("GTM-1") is True
    assert store.get("GTM-1").test_leads == 0
    assert store.get("GTM-1").leads == 1
    assert store.expire_test_leads("GTM-1") is False
    assert store.expire_test_leads("GTM-404") is False


def test_snapshot_is_detached():
    store = AggregateStore()
    store.apply("GTM-1", {"visitors": 1})
    snap = store.snapshot()
    snap["GTM-1"]["visitors"] = 1000
    assert store.get("GTM-1").visitors == 1


def test_clear_empties_store_and_cancels_timers():
    class Timer:
        cancelled = False

        def cancel(self):
            self.cancelled = True

    store = AggregateStore()
    store.get_or_create("GTM-1")
    store.get_or_create("GTM-2")
    timer = Timer()
    store.get("GTM-1").arm_expiry(timer, 1)
    assert store.clear() == 2
    assert len(store) == 0
    assert timer.cancelled


def test_remove_drops_one_site_and_cancels_its_timer():
    class Timer:
        cancelled = False

        def cancel(self):
            self.cancelled = True

    store = AggregateStore()
    store.get_or_create("GTM-1")
    store.get_or_create("GTM-2")
    timer = Timer()
    store.get("GTM-1").arm_expiry(timer, 1)
    assert store.remove("GTM-1")
    assert timer.cancelled
    assert store.site_ids() == ["GTM-2"]
    assert not store.remove("GTM-1")


def test_load_save_load_round_trip(store, persistence, fs):
    store.get_or_create("GTM-1", "Green Reserve", "https://x.in")
    store.apply("GTM-1", {"visitors": 3, "page_views": 3, "leads": 1, "test_leads": 1})
    store.get_or_create("GTM-2", "Duville", "https://y.in")
    store.apply("GTM-2", {"form_submissions": 2, "conversions": 1})
    assert store.persist()

    reloaded = AggregateStore(persistence)
    reloaded.load()
    assert reloaded.snapshot() == store.snapshot()

    assert reloaded.persist()
    again = AggregateStore(persistence)
    again.load()
    assert again.snapshot() == store.snapshot()
    assert json.loads(fs.files[DATA_FILE])["GTM-1"]["conversionRate"] == "33.3"


# ── RawEventLog ──────────────────────────────────────────

def test_raw_log_is_bounded_fifo():
    log = RawEventLog(1000)
    for i in range(1001):
        log.append({"n": i})
    entries = log.entries()
    assert len(entries) == 1000
    assert [e["data"]["n"] for e in entries] == list(range(1, 1001))


def test_raw_log_entry_shape():
    log = RawEventLog(5)
    entry = log.append({"gtmId": "GTM-1"}, timestamp="2025-01-01T00:00:00+00:00")
    assert entry == {"timestamp": "2025-01-01T00:00:00+00:00", "data": {"gtmId": "GTM-1"}}
    log.clear()
    assert len(log) == 0
