#!/usr/bin/env python3
"""
cchat auth -- operator CLI for the authentication service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8040 --reload
  python main.py reset-password user@example.com
  python main.py gen-secrets >> .env

Environment variables (see core/config.py for the full list):
  ACCESS_SECRET_KEY / REFRESH_SECRET_KEY  Token signing secrets (required unless DEBUG=true).
  DATABASE_URL                            SQLAlchemy URL of the credential store.
  RESET_NOTIFY_URL                        Webhook that delivers reset passwords.
"""

import argparse
import secrets
import sys

from auth.errors import AuthError


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_reset_password(args: argparse.Namespace) -> int:
    """Run the reset flow for one account against the configured store and notifier."""
    from auth.service import build_auth_service
    from core.config import get_settings

    service = build_auth_service(get_settings())
    try:
        service.reset_password(args.email)
    except AuthError as e:
        print(f"  [!] Password reset failed: {e.code} ({e.message})")
        return 1
    finally:
        service.close()
    print(f"  New password generated and sent to {args.email}.")
    return 0


def _cmd_gen_secrets(args: argparse.Namespace) -> int:
    """Print two fresh, distinct signing secrets in .env format."""
    print(f"ACCESS_SECRET_KEY={secrets.token_hex(32)}")
    print(f"REFRESH_SECRET_KEY={secrets.token_hex(32)}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cchat-auth",
        description="cchat authentication service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8040)
    serve.add_argument("--reload", action="store_true", help="auto-reload on code changes (dev only)")
    serve.set_defaults(func=_cmd_serve)

    reset = sub.add_parser("reset-password", help="generate and deliver a new password for an account")
    reset.add_argument("email")
    reset.set_defaults(func=_cmd_reset_password)

    gen = sub.add_parser("gen-secrets", help="print new token signing secrets")
    gen.set_defaults(func=_cmd_gen_secrets)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
