import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .config import RAW_LOG_SIZE

logger = logging.getLogger("gtm_dashboard.store")

# attribute name -> key in the persisted / served JSON
COUNTERS = {
    "visitors": "visitors",
    "page_views": "pageViews",
    "form_submissions": "formSubmissions",
    "button_clicks": "buttonClicks",
    "validation_failures": "validationFailures",
    "leads": "leads",
    "test_leads": "testLeads",
    "conversions": "conversions",
}


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _as_count(value) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


# -----------------------------------------------------------------------------
# Site aggregate
# -----------------------------------------------------------------------------
@dataclass
class SiteAggregate:
    site_id: str
    site_name: str = ""
    site_url: str = ""
    visitors: int = 0
    page_views: int = 0
    form_submissions: int = 0
    button_clicks: int = 0
    validation_failures: int = 0
    leads: int = 0
    test_leads: int = 0
    conversions: int = 0
    last_updated: str = field(default_factory=utcnow)

    # pending test-lead expiry timer, owned by this record, never persisted
    expiry_timer: object = field(default=None, repr=False, compare=False)
    expiry_token: int = field(default=0, repr=False, compare=False)

    @property
    def conversion_rate(self) -> str:
        if self.visitors == 0:
            return "0.0"
        return f"{self.leads / self.visitors * 100:.1f}"

    def arm_expiry(self, timer, token: int) -> None:
        self.cancel_expiry()
        self.expiry_timer = timer
        self.expiry_token = token

    def cancel_expiry(self) -> None:
        if self.expiry_timer is not None:
            self.expiry_timer.cancel()
            self.expiry_timer = None

    def to_dict(self) -> dict:
        out = {
            "siteId": self.site_id,
            "siteName": self.site_name,
            "siteUrl": self.site_url,
        }
        for attr, key in COUNTERS.items():
            out[key] = getattr(self, attr)
        out["conversionRate"] = self.conversion_rate
        out["lastUpdated"] = self.last_updated
        return out

    @classmethod
    def from_dict(cls, site_id: str, raw: dict) -> "SiteAggregate":
        """
        Rebuild from persisted JSON. Missing or garbled counters load as 0;
        conversionRate is ignored and recomputed from leads/visitors.
        """
        agg = cls(
            site_id=site_id,
            site_name=str(raw.get("siteName") or ""),
            site_url=str(raw.get("siteUrl") or ""),
        )
        for attr, key in COUNTERS.items():
            setattr(agg, attr, _as_count(raw.get(key)))
        if raw.get("lastUpdated"):
            agg.last_updated = str(raw["lastUpdated"])
        return agg


# -----------------------------------------------------------------------------
# Aggregate store
# -----------------------------------------------------------------------------
class AggregateStore:
    """
    All site aggregates keyed by site id.

    Every read-modify-write runs under one re-entrant lock, since Flask
    request threads and expiry timer threads both mutate records.
    `persistence` is anything with save(snapshot) -> bool and load() -> dict.
    """

    def __init__(self, persistence=None):
        self.persistence = persistence
        self.lock = threading.RLock()
        self._sites: dict[str, SiteAggregate] = {}

    def __len__(self):
        return len(self._sites)

    def __contains__(self, site_id):
        return site_id in self._sites

    def get(self, site_id: str) -> SiteAggregate | None:
        return self._sites.get(site_id)

    def site_ids(self) -> list[str]:
        with self.lock:
            return list(self._sites)

    def load(self) -> int:
        if self.persistence is None:
            return 0
        raw = self.persistence.load()
        with self.lock:
            self._sites = {
                site_id: SiteAggregate.from_dict(site_id, record)
                for site_id, record in raw.items()
            }
        logger.info("📂 Loaded %d site(s) from disk", len(self._sites))
        return len(self._sites)

    def get_or_create(self, site_id: str, site_name: str = "", site_url: str = "") -> SiteAggregate:
        with self.lock:
            agg = self._sites.get(site_id)
            if agg is None:
                agg = SiteAggregate(site_id=site_id, site_name=site_name or "", site_url=site_url or "")
                self._sites[site_id] = agg
                logger.info("🆕 Initialized new site: %s with GTM ID: %s", site_name, site_id)
                self.persist()
                return agg
            # last write wins, but an empty value never erases what we have
            if site_name:
                agg.site_name = site_name
            if site_url:
                agg.site_url = site_url
            return agg

    def apply(self, site_id: str, deltas: dict) -> SiteAggregate:
        """
        Add the classifier's counter deltas to a site. No replay protection:
        applying the same deltas twice counts twice.
        """
        with self.lock:
            agg = self._sites.get(site_id)
            if agg is None:
                agg = self.get_or_create(site_id)
            for attr, amount in deltas.items():
                if attr not in COUNTERS:
                    raise KeyError(f"unknown counter: {attr}")
                if amount < 0:
                    raise ValueError(f"counters only grow, got {attr}={amount}")
                setattr(agg, attr, getattr(agg, attr) + amount)
            agg.last_updated = utcnow()
            logger.debug(
                "📊 Updated counts for %s: visitors=%d leads=%d rate=%s",
                site_id, agg.visitors, agg.leads, agg.conversion_rate,
            )
            return agg

    def expire_test_leads(self, site_id: str) -> bool:
        # the only path that ever lowers a counter
        with self.lock:
            agg = self._sites.get(site_id)
            if agg is None or agg.test_leads == 0:
                return False
            agg.test_leads = 0
            agg.last_updated = utcnow()
            return True

    def snapshot(self) -> dict[str, dict]:
        """Detached JSON-ready copy of every site, safe to hand to callers."""
        with self.lock:
            return {site_id: agg.to_dict() for site_id, agg in self._sites.items()}

    def clear(self) -> int:
        with self.lock:
            count = len(self._sites)
            for agg in self._sites.values():
                agg.cancel_expiry()
            self._sites = {}
            return count

    def remove(self, site_id: str) -> bool:
        """Drop one site, cancelling its pending expiry. False if it isn't tracked."""
        with self.lock:
            agg = self._sites.pop(site_id, None)
            if agg is None:
                return False
            agg.cancel_expiry()
            return True

    def persist(self) -> bool:
        if self.persistence is None:
            return True
        with self.lock:
            return self.persistence.save(self.snapshot())


# -----------------------------------------------------------------------------
# Raw event log
# -----------------------------------------------------------------------------
class RawEventLog:
    """Most recent payloads, oldest dropped first once full."""

    def __init__(self, capacity: int = RAW_LOG_SIZE):
        self.capacity = capacity
        self._entries = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._entries)

    def append(self, data, timestamp: str | None = None) -> dict:
        entry = {"timestamp": timestamp or utcnow(), "data": data}
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> list[dict]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
