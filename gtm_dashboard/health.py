import logging
import time
from urllib.parse import urlparse

import requests

from .config import HEALTH_TIMEOUT

logger = logging.getLogger("gtm_dashboard.health")

USER_AGENT = "gtm-dashboard-status/1.0"


class SiteHealthChecker:
    """
    Is a microsite up? One GET with a bounded timeout, no retries.

    online  -> 2xx/3xx answer
    warning -> the site answered with an error status
    offline -> timeout, DNS or connection failure
    unknown -> no url, or not an http(s) url

    Without an injected `session` each check goes through a plain
    `requests.get`, since a shared Session is not safe across request threads.
    """

    def __init__(self, timeout: float = HEALTH_TIMEOUT, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session

    def check(self, url: str) -> dict:
        if not url:
            return {"status": "unknown", "responseTimeMs": 0}
        if urlparse(url).scheme not in ("http", "https"):
            logger.warning("Refusing status check for non-http url %r", url)
            return {"status": "unknown", "responseTimeMs": 0}

        get = self.session.get if self.session is not None else requests.get
        start = time.monotonic()
        try:
            resp = get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.warning("🔴 %s unreachable: %s", url, e)
            return {"status": "offline", "responseTimeMs": 0}

        elapsed_ms = int((time.monotonic() - start) * 1000)
        status = "online" if resp.ok else "warning"
        if status == "warning":
            logger.info("🟡 %s answered HTTP %s", url, resp.status_code)
        return {"status": status, "responseTimeMs": elapsed_ms}
