#!/usr/bin/env python3
"""
gtm-dashboard: inspect and tidy the persisted site counters.

Usage examples:
  # Per-site counters from the default data file
  gtm-dashboard show

  # Zero every testLeads counter left behind by demo traffic
  gtm-dashboard clear-test-leads --data-file ./data/siteCounts.json

  # Delete test microsites outright
  gtm-dashboard remove GTM-TEST1 GTM-TEST2

  # Wipe all sites (refuses without --yes)
  gtm-dashboard reset --yes

  # Development server
  gtm-dashboard serve --port 9000

Every write goes through the same backup-then-save path as the server, so
the previous file is always left behind as <data-file>.backup.
"""

import argparse
import sys

from . import config
from .app import configure_logging, create_app
from .persistence import PersistenceManager
from .store import AggregateStore


def open_store(data_file: str) -> AggregateStore:
    store = AggregateStore(PersistenceManager(data_file))
    store.load()
    return store


# --------- Commands ---------
def cmd_show(args) -> int:
    store = open_store(args.data_file)
    snapshot = store.snapshot()
    if not snapshot:
        print("No sites tracked yet.")
        return 0
    for site_id, site in snapshot.items():
        print(f"{site_id}  {site['siteName'] or '-'}  ({site['siteUrl'] or 'no url'})")
        print(
            f"      visitors={site['visitors']} leads={site['leads']} "
            f"testLeads={site['testLeads']} conversions={site['conversions']} "
            f"rate={site['conversionRate']}%"
        )
    return 0


def cmd_clear_test_leads(args) -> int:
    store = open_store(args.data_file)
    cleared = [site_id for site_id in store.site_ids() if store.expire_test_leads(site_id)]
    if not cleared:
        print("No test leads to clear.")
        return 0
    if not store.persist():
        print(f"FAIL: could not write {args.data_file}", file=sys.stderr)
        return 1
    for site_id in cleared:
        print(f"OK  : cleared test leads for {site_id}")
    return 0


def cmd_reset(args) -> int:
    if not args.yes:
        print("Refusing to wipe all site data without --yes", file=sys.stderr)
        return 2
    store = open_store(args.data_file)
    count = store.clear()
    if not store.persist():
        print(f"FAIL: could not write {args.data_file}", file=sys.stderr)
        return 1
    print(f"OK  : removed {count} site(s) from {args.data_file}")
    return 0


def cmd_remove(args) -> int:
    store = open_store(args.data_file)
    removed = []
    for site_id in args.site_ids:
        if store.remove(site_id):
            removed.append(site_id)
        else:
            print(f"SKIP: {site_id} not tracked")
    if removed and not store.persist():
        print(f"FAIL: could not write {args.data_file}", file=sys.stderr)
        return 1
    for site_id in removed:
        print(f"OK  : removed {site_id}")
    return 0


def cmd_serve(args) -> int:
    create_app(data_file=args.data_file).run(host=args.host, port=args.port)
    return 0


# --------- CLI ---------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gtm-dashboard", description="GTM microsite dashboard tools.")
    parser.add_argument("--data-file", default=config.DATA_FILE,
                        help=f"Persisted site counters (default: {config.DATA_FILE})")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("show", help="Print per-site counters").set_defaults(func=cmd_show)
    sub.add_parser("clear-test-leads", help="Zero every testLeads counter").set_defaults(
        func=cmd_clear_test_leads)

    reset = sub.add_parser("reset", help="Remove every site")
    reset.add_argument("--yes", action="store_true", help="Confirm the wipe")
    reset.set_defaults(func=cmd_reset)

    remove = sub.add_parser("remove", help="Delete individual sites, e.g. demo microsites")
    remove.add_argument("site_ids", nargs="+", metavar="GTM_ID")
    remove.set_defaults(func=cmd_remove)

    serve = sub.add_parser("serve", help="Run the development server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=config.PORT)
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
