"""Operator commands for bootstrapping the service.

Usage (from ``backend/``)::

    python -m app.manage init-db
    python -m app.manage create-user --email a@b.com --name Ada --active
    python -m app.manage grant-role --email a@b.com --role admin
    python -m app.manage issue-key --email a@b.com --name laptop

``issue-key`` prints the raw key once. Only its hash is stored.
"""

import argparse
import secrets
import sys

from sqlalchemy.orm import Session

from app.database import get_db, init_db
from app.deps import has_role, hash_key
from app.models.api_key import ApiKey
from app.models.user import (
    MEMBER_STATUS_ACTIVE,
    MEMBER_STATUS_PENDING,
    VALID_ROLES,
    User,
    UserRole,
)


class ManageError(Exception):
    pass


def _user_by_email(db: Session, email: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise ManageError(f"No user with email {email}")
    return user


def create_user(db: Session, email: str, name: str = "", active: bool = False) -> User:
    if db.query(User).filter(User.email == email).first() is not None:
        raise ManageError(f"User {email} already exists")
    user = User(
        email=email,
        name=name,
        member_status=MEMBER_STATUS_ACTIVE if active else MEMBER_STATUS_PENDING,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def grant_role(db: Session, email: str, role: str) -> bool:
    """Add ``role`` to the user. False when they already hold it."""
    if role not in VALID_ROLES:
        raise ManageError(f"Unknown role {role!r}; expected one of {', '.join(VALID_ROLES)}")
    user = _user_by_email(db, email)
    if has_role(db, user.id, role):
        return False
    db.add(UserRole(user_id=user.id, role=role))
    db.commit()
    return True


def issue_key(db: Session, email: str, name: str) -> str:
    """Create an API key for the user and return the raw value."""
    user = _user_by_email(db, email)
    raw_key = secrets.token_urlsafe(32)
    db.add(ApiKey(user_id=user.id, name=name, key_hash=hash_key(raw_key)))
    db.commit()
    return raw_key


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m app.manage")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    p_user = sub.add_parser("create-user", help="Create a user")
    p_user.add_argument("--email", required=True)
    p_user.add_argument("--name", default="")
    p_user.add_argument("--active", action="store_true", help="Mark membership active")

    p_role = sub.add_parser("grant-role", help="Grant a role to a user")
    p_role.add_argument("--email", required=True)
    p_role.add_argument("--role", required=True, choices=VALID_ROLES)

    p_key = sub.add_parser("issue-key", help="Issue an API key (printed once)")
    p_key.add_argument("--email", required=True)
    p_key.add_argument("--name", default="default")

    args = parser.parse_args(argv)

    if args.command == "init-db":
        init_db()
        print("Tables created")
        return 0

    db = get_db()
    try:
        if args.command == "create-user":
            user = create_user(db, args.email, args.name, args.active)
            print(f"Created user {user.id} ({user.email}, {user.member_status})")
        elif args.command == "grant-role":
            added = grant_role(db, args.email, args.role)
            print(f"Granted {args.role}" if added else f"{args.email} already has {args.role}")
        elif args.command == "issue-key":
            print(issue_key(db, args.email, args.name))
    except ManageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
