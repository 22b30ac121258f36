import logging

from .classifier import Classification, classify
from .config import TEST_KEYWORDS

logger = logging.getLogger("gtm_dashboard.tracker")


class MissingSiteId(ValueError):
    pass


class Tracker:
    """
    Ties one inbound payload to the store:
    raw log -> classify -> mutate site -> arm expiry -> persist.
    """

    def __init__(self, store, raw_log, scheduler, keywords=TEST_KEYWORDS):
        self.store = store
        self.raw_log = raw_log
        self.scheduler = scheduler
        self.keywords = tuple(keywords)

    def ingest(self, payload: dict) -> Classification:
        site_id = str(payload.get("gtmId") or "").strip()
        if not site_id:
            raise MissingSiteId("payload has no gtmId")

        self.raw_log.append(payload)
        result = classify(payload, self.keywords)

        with self.store.lock:
            self.store.get_or_create(
                site_id,
                str(payload.get("siteName") or ""),
                str(payload.get("siteUrl") or ""),
            )
            agg = self.store.apply(site_id, result.deltas)
            if result.is_test_lead:
                self.scheduler.schedule(site_id)
            self.store.persist()

        if result.skipped:
            logger.debug("🚫 Skipping conversion for %s, already counted via form submit", site_id)
        elif result.is_test_lead:
            logger.info("🧪 Test lead for %s (%d pending)", site_id, agg.test_leads)
        elif "leads" in result.deltas:
            logger.info("✅ Lead counted for %s (%d total)", site_id, agg.leads)
        return result

    def state(self) -> dict:
        return {
            "sites": len(self.store),
            "rawEvents": len(self.raw_log),
            "siteIds": self.store.site_ids(),
        }

    def reset(self) -> dict:
        """Drop every site, the raw log and all pending expiry timers."""
        with self.store.lock:
            cleared = self.store.clear()
            self.raw_log.clear()
            self.store.persist()
        logger.info("🗑️  Cleared %d site(s) and the raw event log", cleared)
        return {"sitesCleared": cleared}
