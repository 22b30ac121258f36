import itertools
import logging
import threading

from .config import TEST_LEAD_TTL

logger = logging.getLogger("gtm_dashboard.scheduler")


class TestLeadExpiryScheduler:
    """
    Clears a site's testLeads once it has seen no test lead for `ttl` seconds.

    The window slides: each new test lead cancels the pending timer and arms
    a fresh one, so at most one timer per site is ever live. Timers are
    stored on the SiteAggregate itself and started through `timer_factory`
    (threading.Timer signature), which tests replace with a manual clock.
    """

    __test__ = False  # not a pytest class

    def __init__(self, store, ttl: float = TEST_LEAD_TTL, timer_factory=threading.Timer):
        self.store = store
        self.ttl = ttl
        self.timer_factory = timer_factory
        self._tokens = itertools.count(1)

    def schedule(self, site_id: str, duration: float | None = None) -> bool:
        duration = self.ttl if duration is None else duration
        with self.store.lock:
            agg = self.store.get(site_id)
            if agg is None:
                return False
            token = next(self._tokens)
            timer = self.timer_factory(duration, self._fire, args=(site_id, token))
            timer.daemon = True
            agg.arm_expiry(timer, token)
            timer.start()
        logger.debug("⏲️  Test-lead expiry for %s armed (%ss)", site_id, duration)
        return True

    def resume(self) -> int:
        """
        Arm a fresh window for every site loaded with test leads still
        outstanding, since pending timers do not survive a restart.
        """
        with self.store.lock:
            armed = [
                site_id for site_id in self.store.site_ids()
                if self.store.get(site_id).test_leads > 0 and self.schedule(site_id)
            ]
        if armed:
            logger.info("⏲️  Re-armed test-lead expiry for %d site(s)", len(armed))
        return len(armed)

    def cancel(self, site_id: str) -> None:
        with self.store.lock:
            agg = self.store.get(site_id)
            if agg is not None:
                agg.cancel_expiry()

    def pending(self) -> list[str]:
        with self.store.lock:
            return [
                site_id for site_id in self.store.site_ids()
                if self.store.get(site_id).expiry_timer is not None
            ]

    def _fire(self, site_id: str, token: int) -> None:
        with self.store.lock:
            agg = self.store.get(site_id)
            # superseded by a later test lead, or the store was reset
            if agg is None or agg.expiry_token != token:
                return
            agg.expiry_timer = None
            if not self.store.expire_test_leads(site_id):
                return
            logger.info("🧹 Test leads for %s expired", site_id)
            self.store.persist()
