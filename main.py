#!/usr/bin/env python3
"""
Sentry OAuth dashboard API - command line entry point.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep sentryauth imports lazy (inside functions) so `--help` works without
# the server dependencies installed.
#


def check_config() -> int:
    """Validate OAuth/session configuration from the environment. Returns an exit code."""
    from sentryauth.auth.config import load_auth_config
    from sentryauth.auth.errors import ConfigurationError
    from sentryauth.auth.oauth import SentryOAuthClient

    cfg = load_auth_config()
    ok = True
    try:
        SentryOAuthClient(cfg)
        print(f"✅ OAuth client configured (base_url={cfg.base_url}, redirect_uri={cfg.redirect_uri})")
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        ok = False
    if cfg.session_secret:
        print(f"✅ Session signing configured (ttl={cfg.session_ttl_seconds}s, secure_cookie={cfg.cookie_secure})")
    else:
        print("❌ SESSION_SECRET is not set", file=sys.stderr)
        ok = False
    print(f"   Frontend: {cfg.frontend_url}")
    print(f"   Scopes: {cfg.scope}")
    return 0 if ok else 1


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sentry OAuth login + dashboard API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate environment configuration
  python main.py --check-config

  # Run the API server
  python main.py --serve-api --port 3001
        """,
    )
    parser.add_argument("--serve-api", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--check-config", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--host", default="0.0.0.0", help="API server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=3001, help="API server listen port (default: 3001)")

    args = parser.parse_args()

    if args.check_config:
        sys.exit(check_config())

    if args.serve_api:
        from sentryauth.api.server import run as run_api

        run_api(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
