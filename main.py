#!/usr/bin/env python3
"""
Portal - bearer-token auth API and command-line session shell.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep portal imports lazy (inside functions) so `--serve` does not pull in
# the client stack and client commands do not import FastAPI.
#


def _open_session():
    from portal.client.session import SessionClient

    return SessionClient.from_config()


def _print_api_error(err) -> None:
    print(f"❌ {err.message}", file=sys.stderr)
    for field, messages in err.errors.items():
        for msg in messages or []:
            print(f"   {field}: {msg}", file=sys.stderr)


def _restore(session) -> bool:
    """Re-derive the saved session. Prints the failure and returns False if the API can't confirm it."""
    import requests

    from portal.client.errors import ApiError, ClientError

    try:
        session.restore()
    except ApiError as e:
        _print_api_error(e)
        return False
    except (requests.RequestException, ClientError) as e:
        print(f"❌ Could not restore session: {e}", file=sys.stderr)
        return False
    return True


def _read_password(confirm: bool = False) -> tuple:
    password = getpass.getpass("Password: ")
    confirmation = getpass.getpass("Confirm password: ") if confirm else password
    return password, confirmation


def render_dashboard(user) -> str:
    return f"Dashboard\n  name:  {user.name}\n  email: {user.email}"


def cmd_register(name: str, email: str) -> int:
    import requests

    from portal.client.errors import ApiError, ClientError

    with _open_session() as session:
        if not _restore(session):
            return 1
        password, confirmation = _read_password(confirm=True)
        try:
            state = session.register(name, email, password, confirmation)
        except ApiError as e:
            _print_api_error(e)
            return 1
        except (requests.RequestException, ClientError) as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1
    print(f"✅ Registered and signed in as {state.user.name} <{state.user.email}>")
    return 0


def cmd_login(email: str) -> int:
    import requests

    from portal.client.errors import ApiError, ClientError

    with _open_session() as session:
        if not _restore(session):
            return 1
        password, _ = _read_password()
        try:
            state = session.login(email, password)
        except ApiError as e:
            _print_api_error(e)
            return 1
        except (requests.RequestException, ClientError) as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1
    print(f"✅ Signed in as {state.user.name} <{state.user.email}>")
    return 0


def cmd_logout() -> int:
    import requests

    from portal.client.errors import ApiError, NotAuthenticated

    with _open_session() as session:
        if not _restore(session):
            return 1
        try:
            session.logout()
        except NotAuthenticated:
            print("Not signed in.")
            return 0
        except ApiError as e:
            # 401: session was already gone server-side; local state is cleared.
            _print_api_error(e)
            return 0 if e.status_code == 401 else 1
        except requests.RequestException as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1
    print("👋 Signed out")
    return 0


def cmd_whoami() -> int:
    with _open_session() as session:
        if not _restore(session):
            return 1
        user = session.user
    if user is None:
        print("Not signed in.")
        return 1
    print(f"{user.name} <{user.email}> (id={user.id})")
    return 0


def cmd_dashboard(redirect_to: str) -> int:
    from portal.client.guard import Redirect, protected_route

    with _open_session() as session:
        if not _restore(session):
            return 1
        view = protected_route(session, render_dashboard, redirect_to=redirect_to)
    if isinstance(view, Redirect):
        print(f"↪ Not signed in, redirecting to {view.to}")
        return 1
    print(view)
    return 0


def cmd_migrate() -> int:
    from portal.store.config import BACKEND_POSTGRES, load_store_config
    from portal.store.migrate import migrate

    cfg = load_store_config()
    if cfg.backend != BACKEND_POSTGRES or not cfg.postgres_dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2
    versions = migrate(cfg.postgres_dsn)
    if versions:
        print(f"Applied {len(versions)} migration(s): {', '.join(versions)}")
    else:
        print("No pending migrations.")
    return 0


def main(argv: Optional[list] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Portal auth API server and session shell",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API server
  python main.py --serve --port 8080

  # Create an account (prompts for password) and sign in
  python main.py --register "Andrew" andrew@example.com

  # Show the protected dashboard (redirects when signed out)
  python main.py --dashboard
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--host", default="0.0.0.0", help="API server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="API server listen port (default: 8080)")
    parser.add_argument("--migrate", action="store_true", help="Apply pending Postgres migrations and exit")
    parser.add_argument("--register", nargs=2, metavar=("NAME", "EMAIL"), help="Register a new account")
    parser.add_argument("--login", metavar="EMAIL", help="Sign in with email (prompts for password)")
    parser.add_argument("--logout", action="store_true", help="Revoke the current token and sign out")
    parser.add_argument("--whoami", action="store_true", help="Show the signed-in user")
    parser.add_argument("--dashboard", action="store_true", help="Render the protected dashboard view")
    parser.add_argument(
        "--redirect-to", default="/", help="Where --dashboard redirects anonymous sessions (default: /)"
    )

    args = parser.parse_args(argv)

    if args.serve:
        from portal.api.server import run

        run(host=args.host, port=args.port)
        return 0
    if args.migrate:
        return cmd_migrate()
    if args.register:
        return cmd_register(args.register[0], args.register[1])
    if args.login:
        return cmd_login(args.login)
    if args.logout:
        return cmd_logout()
    if args.whoami:
        return cmd_whoami()
    if args.dashboard:
        return cmd_dashboard(args.redirect_to)

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
