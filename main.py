#!/usr/bin/env python3
"""
AccountGuard -- administrative command line.

Operates directly on the stores under DATA_DIR, so it works while the API is
down (for example to create the first admin, or to unlock an admin who
locked themselves out).

Usage:
  python main.py create-user alice --role admin
  python main.py create-user bob --password 'S3cure!pass'
  python main.py unlock 3
  python main.py sweep-sessions
  python main.py locked
  python main.py audit --user 3 --limit 20
"""

import argparse
import getpass
import logging
from typing import Optional

from auth.service import AuthService
from core.config import get_settings
from core.errors import SecurityError


def _create_user(service: AuthService, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass(f"Password for {args.name}: ")
    result = service.register(args.name, password, profession=args.profession, role=args.role)
    print(f"  Created {result.user.role} '{result.user.name}' (id={result.user.id}).")
    return 0


def _unlock(service: AuthService, args: argparse.Namespace) -> int:
    if service.credentials.get_by_id(args.user_id) is None:
        print(f"  [!] No user with id {args.user_id}.")
        return 1
    # Actor 0 marks an operator action taken outside the API.
    service.unlock(args.user_id, actor_id=0)
    print(f"  User {args.user_id} unlocked.")
    return 0


def _sweep_sessions(service: AuthService, args: argparse.Namespace) -> int:
    count = service.sessions.sweep_expired()
    print(f"  Expired {count} session(s).")
    return 0


def _locked(service: AuthService, args: argparse.Namespace) -> int:
    accounts = service.lockouts.locked_accounts()
    if not accounts:
        print("  No locked accounts.")
        return 0
    print(f"  {'USER':>6}  {'FAILURES':>8}  LOCKED UNTIL")
    for account in accounts:
        print(f"  {account.user_id:>6}  {account.failed_attempts:>8}  {account.locked_until.isoformat()}")
    return 0


def _audit(service: AuthService, args: argparse.Namespace) -> int:
    page = service.audit.query(user_id=args.user, limit=args.limit)
    for entry in page.entries:
        who = entry.user_id if entry.user_id is not None else "-"
        target = f"{entry.resource}:{entry.resource_id}" if entry.resource_id else entry.resource
        print(f"  {entry.timestamp.isoformat()}  {entry.status:<7}  user={who:<5}  {entry.action:<16}  {target}")
    print(f"\n  {len(page.entries)} of {page.total} entries shown.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accountguard",
        description="Administer AccountGuard users, lockouts, sessions and the audit trail.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create a user account")
    p.add_argument("name")
    p.add_argument("--role", choices=["user", "admin"], default="user")
    p.add_argument("--profession", default="")
    p.add_argument("--password", help="Password (prompted for when omitted)")
    p.set_defaults(handler=_create_user)

    p = sub.add_parser("unlock", help="Clear the lockout record of a user")
    p.add_argument("user_id", type=int)
    p.set_defaults(handler=_unlock)

    p = sub.add_parser("sweep-sessions", help="Mark every expired session as expired")
    p.set_defaults(handler=_sweep_sessions)

    p = sub.add_parser("locked", help="List currently locked accounts")
    p.set_defaults(handler=_locked)

    p = sub.add_parser("audit", help="Show recent audit entries, newest first")
    p.add_argument("--user", type=int, default=None, metavar="ID")
    p.add_argument("--limit", type=int, default=50, metavar="N")
    p.set_defaults(handler=_audit)

    return parser


def main(argv: Optional[list[str]] = None, service: Optional[AuthService] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    owned = service is None
    if service is None:
        service = AuthService.from_settings(get_settings())
    try:
        return args.handler(service, args)
    except SecurityError as e:
        print(f"  [!] {e.message}")
        if getattr(e, "violations", None):
            print(f"      Failed rules: {', '.join(e.violations)}")
        return 1
    finally:
        if owned:
            service.close()


if __name__ == "__main__":
    raise SystemExit(main())
