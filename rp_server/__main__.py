"""Command-line entry point to run the RP server."""

from __future__ import annotations

import argparse

from .app import create_app
from .config import RPSettings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="WebAuthn Relying Party server")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=5000, help="Port to listen on")
    parser.add_argument("--rp-id", help="Relying Party identifier (overrides RP_RP_ID)")
    parser.add_argument("--origin", help="Expected client origin (overrides RP_ORIGIN)")
    parser.add_argument("--debug", action="store_true", help="Run Flask in debug mode")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    overrides = {}
    if args.rp_id:
        overrides["rp_id"] = args.rp_id
    if args.origin:
        overrides["origin"] = args.origin
    app = create_app(RPSettings(**overrides))
    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)


if __name__ == "__main__":
    main()
