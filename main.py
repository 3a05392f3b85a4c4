#!/usr/bin/env python3
"""
IOC Registry -- administration commands.

Usage:
  python main.py seed
  python main.py seed --sha256 full_sha256.csv --urls full_urls.csv --ipports full_ip-port.csv
  python main.py seed --sha256 recent.csv --batch-size 500
  python main.py create-admin --username root --email root@example.com --password 's3cret!'
  python main.py set-role --email analyst@example.com --role researcher

The database comes from DATABASE_URL (see core/config.py) unless
--database-url is given. Settings are loaded in full, so SECRET_KEY must be
set here too.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.store import UserStore
from core.config import get_settings
from ioc.ingest import DEFAULT_BATCH_SIZE, import_csv
from ioc.models import IOCKind
from ioc.store import IOCStore

logger = logging.getLogger("iocregistry.cli")

_ROOT = Path(__file__).resolve().parent

# ThreatFox export file names, looked up next to this script when `seed` is
# run without any file option.
_DEFAULT_FILES = {
    IOCKind.SHA256: _ROOT / "full_sha256.csv",
    IOCKind.URL: _ROOT / "full_urls.csv",
    IOCKind.IPPORT: _ROOT / "full_ip-port.csv",
}


def _resolve_file(path: str) -> Optional[Path]:
    """Return the resolved path if it is a regular file, else None.

    Rejects FIFOs, devices and directories before anything is opened.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    return file_path


def _database_url(args: argparse.Namespace) -> str:
    return args.database_url or get_settings().database_url


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_seed(args: argparse.Namespace) -> int:
    requested = {
        IOCKind.SHA256: args.sha256,
        IOCKind.URL: args.urls,
        IOCKind.IPPORT: args.ipports,
    }
    if not any(requested.values()):
        requested = {kind: str(path) for kind, path in _DEFAULT_FILES.items() if path.is_file()}
        if not requested:
            print("  [!] No CSV files given and none of the default export files were found.")
            return 1

    store = IOCStore(_database_url(args))
    failed = False
    try:
        print("\nIOC Registry -- seeding database")
        print("-" * 40)
        for kind, path in requested.items():
            if not path:
                continue
            file_path = _resolve_file(path)
            if file_path is None:
                failed = True
                continue
            print(f"  {kind.label}: {file_path.name}")
            try:
                with file_path.open(encoding="utf-8", newline="") as fh:
                    result = import_csv(store, kind, fh, batch_size=args.batch_size)
            except OSError as e:
                print(f"  [!] Could not read file '{path}': {e}")
                failed = True
                continue
            print(
                f"    {result.rows_read} rows read, {result.inserted} inserted, "
                f"{result.skipped} duplicates skipped, {len(result.errors)} malformed."
            )
    finally:
        store.close()

    print("\nSeeding complete." if not failed else "\nSeeding finished with errors.")
    return 1 if failed else 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    store = UserStore(_database_url(args))
    try:
        user_id = store.create_user(
            User(username=args.username.strip(), email=args.email.strip().lower(), role=Role.ADMIN),
            password=args.password,
        )
    except IntegrityError:
        print("  [!] A user with that email or username already exists. Use set-role to promote it.")
        return 1
    finally:
        store.close()
    print(f"  Admin user '{args.username}' created (id {user_id}).")
    return 0


def cmd_set_role(args: argparse.Namespace) -> int:
    store = UserStore(_database_url(args))
    try:
        user = store.get_by_email(args.email.strip().lower())
        if user is None:
            print(f"  [!] No user with email '{args.email}'.")
            return 1
        store.update_user(user.id, role=Role(args.role))
    finally:
        store.close()
    print(f"  {user.username}: {user.role.value} -> {args.role}")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ioc-registry",
        description="Administration commands for the IOC registry.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py seed --urls full_urls.csv --batch-size 500
  python main.py create-admin --username root --email root@example.com --password 's3cret!'
  python main.py set-role --email analyst@example.com --role researcher
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    seed = sub.add_parser("seed", help="Import ThreatFox CSV exports")
    seed.add_argument("--sha256", metavar="PATH", help="CSV export of SHA256 hashes")
    seed.add_argument("--urls", metavar="PATH", help="CSV export of URLs")
    seed.add_argument("--ipports", metavar="PATH", help="CSV export of IP:port pairs")
    seed.add_argument(
        "--batch-size",
        type=_positive_int,
        default=DEFAULT_BATCH_SIZE,
        metavar="N",
        help=f"Rows per insert batch (default: {DEFAULT_BATCH_SIZE})",
    )
    seed.set_defaults(func=cmd_seed)

    admin = sub.add_parser("create-admin", help="Create a user with the admin role")
    admin.add_argument("--username", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument("--password", required=True)
    admin.set_defaults(func=cmd_create_admin)

    set_role = sub.add_parser("set-role", help="Change the role of an existing user")
    set_role.add_argument("--email", required=True)
    set_role.add_argument("--role", required=True, choices=[r.value for r in Role])
    set_role.set_defaults(func=cmd_set_role)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
