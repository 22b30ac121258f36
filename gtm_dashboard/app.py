import logging
import threading

from flask import Flask, request, abort, jsonify

from . import config
from .health import SiteHealthChecker
from .persistence import PersistenceManager
from .scheduler import TestLeadExpiryScheduler
from .store import AggregateStore, RawEventLog
from .tracker import MissingSiteId, Tracker

logger = logging.getLogger("gtm_dashboard.app")


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def pick_cors_origin(request_origin: str | None, allowed: list[str]) -> str | None:
    """
    Return the origin to echo back, or None when it isn't on the allowlist.
    A "*" entry lets every microsite through.
    """
    if "*" in allowed:
        return request_origin or "*"
    if not request_origin:
        return None
    for origin in allowed:
        if request_origin == origin:
            return origin
    return None


def create_app(
    data_file: str | None = None,
    fs=None,
    test_lead_ttl: float | None = None,
    raw_log_size: int | None = None,
    timer_factory=threading.Timer,
    health_checker=None,
    admin_token: str | None = None,
    keywords=None,
    cors_origins: list[str] | None = None,
) -> Flask:
    """
    Build the dashboard server. Every collaborator can be swapped from
    tests; the defaults come from the environment (see config.py).
    """
    app = Flask(__name__)

    persistence = PersistenceManager(data_file or config.DATA_FILE, fs=fs)
    store = AggregateStore(persistence)
    store.load()
    raw_log = RawEventLog(raw_log_size or config.RAW_LOG_SIZE)
    scheduler = TestLeadExpiryScheduler(
        store,
        ttl=config.TEST_LEAD_TTL if test_lead_ttl is None else test_lead_ttl,
        timer_factory=timer_factory,
    )
    scheduler.resume()
    tracker = Tracker(store, raw_log, scheduler, keywords or config.TEST_KEYWORDS)
    checker = health_checker or SiteHealthChecker()

    token_required = config.ADMIN_TOKEN if admin_token is None else admin_token
    allowed_origins = config.CORS_ALLOW_ORIGINS if cors_origins is None else cors_origins

    app.extensions["gtm_dashboard"] = tracker

    def check_admin_token():
        if not token_required:
            return
        token = request.args.get("token") or request.headers.get("X-Admin-Token", "")
        if token != token_required:
            abort(403)

    @app.after_request
    def add_cors_headers(resp):
        origin = pick_cors_origin(request.headers.get("Origin"), allowed_origins)
        if origin:
            resp.headers["Access-Control-Allow-Origin"] = origin
            if origin != "*":
                resp.headers["Vary"] = "Origin"
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
            resp.headers["Access-Control-Max-Age"] = "600"
        return resp

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------
    @app.route("/api/receive", methods=["POST", "OPTIONS"])
    def receive():
        """
        Tracker endpoint. Body example:
          { "gtmId": "GTM-ABC123", "siteName": "Green Reserve",
            "siteUrl": "https://...", "eventType": "gtm.thankYouPage",
            "data": { "name": "Alice" } }
        Acknowledged with 200 even when the disk write fails.
        """
        if request.method == "OPTIONS":
            return ("", 200)

        payload = request.get_json(force=True, silent=True)
        if not isinstance(payload, dict):
            logger.warning("Rejected tracking payload: invalid JSON")
            return jsonify({"error": "Invalid JSON"}), 400

        try:
            result = tracker.ingest(payload)
        except MissingSiteId:
            return jsonify({"error": "Missing gtmId"}), 400

        logger.debug("📊 Received tracking data: %s %s", result.kind.value, payload.get("siteName"))
        return jsonify({"status": "success", "message": "Data received"})

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    @app.route("/api/counts.json")
    def counts():
        return jsonify(store.snapshot())

    @app.route("/api/data.json")
    def raw_data():
        return jsonify(raw_log.entries())

    @app.route("/api/sites/<site_id>/status")
    def site_status(site_id):
        # fetches a producer-supplied URL, admin only
        check_admin_token()
        agg = store.get(site_id)
        if agg is None:
            abort(404)
        result = checker.check(agg.site_url)
        return jsonify({"siteId": site_id, **result})

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------
    @app.route("/api/admin/state")
    def admin_state():
        check_admin_token()
        return jsonify(tracker.state())

    @app.route("/api/admin/reset", methods=["POST"])
    def admin_reset():
        check_admin_token()
        body = request.get_json(force=True, silent=True) or {}
        if not isinstance(body, dict) or body.get("confirm") is not True:
            return jsonify({"error": "Confirmation required"}), 400
        result = tracker.reset()
        return jsonify({"status": "success", "message": "All data cleared", **result})

    # -------------------------------------------------------------------------
    # health
    # -------------------------------------------------------------------------
    @app.route("/healthz")
    def healthz():
        return "ok", 200

    return app


if __name__ == "__main__":
    # Dev mode, container uses gunicorn "gtm_dashboard.app:create_app()"
    configure_logging()
    create_app().run(host="0.0.0.0", port=config.PORT)
