#!/usr/bin/env python3
"""
Admin account creation tool for the revaluation portal.

    python scripts/create_admin.py --email admin@univ.edu --password '...' \
        --full-name "Exam Cell Admin" --department ADMIN
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models import db, User  # noqa: E402
from utils.identity import IdentityError, get_identity_service  # noqa: E402


def create_admin(app, email, password, full_name, department=None):
    """Create an admin identity user and its mirror row. Returns the user id."""
    with app.app_context():
        existing = User.query.filter_by(email=email).first()
        if existing:
            raise SystemExit(f"User already exists: {existing.email} ({existing.role})")

        identity = get_identity_service()
        auth_user = identity.create_user(
            email,
            password,
            {"full_name": full_name, "role": "admin", "department": department},
        )
        try:
            db.session.add(
                User(
                    id=auth_user["id"],
                    email=email,
                    full_name=full_name,
                    department=department,
                    role="admin",
                )
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            identity.delete_user(auth_user["id"])
            raise
        return auth_user["id"]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a portal admin account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--full-name", required=True)
    parser.add_argument("--department")
    args = parser.parse_args(argv)

    from app import app

    try:
        user_id = create_admin(
            app,
            args.email.strip().lower(),
            args.password,
            args.full_name,
            args.department,
        )
    except IdentityError as e:
        print(f"Error creating admin: {e}")
        return 1

    print(f"Admin account created: {args.email} ({user_id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
