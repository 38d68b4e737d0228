#!/usr/bin/env python3
"""Bootstrap the MentalSpace database with its schema and default staff accounts."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from mentalspace import auth
from mentalspace.db import get_database_settings, init_db, session_scope
from mentalspace.log_config import configure_logging

DEFAULT_ADMIN = {
    "email": "admin@exampleclinic.com",
    "password": "Admin123!",
    "role": "admin",
    "first_name": "System",
    "last_name": "Administrator",
}

DEFAULT_SUPERVISOR = {
    "email": "supervisor@exampleclinic.com",
    "password": "Supervisor123!",
    "role": "supervisor",
    "first_name": "Clinical",
    "last_name": "Supervisor",
}

DEFAULT_CLINICIAN = {
    "email": "clinician@exampleclinic.com",
    "password": "Clinician123!",
    "role": "clinician",
    "first_name": "Staff",
    "last_name": "Clinician",
}

DEFAULT_USERS = {
    "admin": DEFAULT_ADMIN,
    "supervisor": DEFAULT_SUPERVISOR,
    "clinician": DEFAULT_CLINICIAN,
}

USER_ENV_VARS = {
    "admin": ("MENTALSPACE_ADMIN_EMAIL", "MENTALSPACE_ADMIN_PASSWORD"),
    "supervisor": ("MENTALSPACE_SUPERVISOR_EMAIL", "MENTALSPACE_SUPERVISOR_PASSWORD"),
    "clinician": ("MENTALSPACE_CLINICIAN_EMAIL", "MENTALSPACE_CLINICIAN_PASSWORD"),
}


def _resolve_user_spec(role: str, args: argparse.Namespace) -> Dict[str, str]:
    base = dict(DEFAULT_USERS[role])
    email_var, password_var = USER_ENV_VARS[role]
    override_email = getattr(args, f"{role}_email") or os.getenv(email_var)
    override_pass = getattr(args, f"{role}_password") or os.getenv(password_var)
    if override_email:
        base["email"] = override_email
    if override_pass:
        base["password"] = override_pass
    return base


def seed_default_users(session: Session, args: argparse.Namespace) -> List[Tuple[str, str, str]]:
    created: List[Tuple[str, str, str]] = []
    for role in DEFAULT_USERS:
        spec = _resolve_user_spec(role, args)
        existing = auth.get_user_by_email(session, spec["email"])
        if existing is not None:
            if existing.role != spec["role"]:
                existing.role = spec["role"]
            continue
        auth.register_user(
            session,
            spec["email"],
            spec["password"],
            spec["role"],
            first_name=spec["first_name"],
            last_name=spec["last_name"],
        )
        created.append((spec["email"], spec["password"], spec["role"]))
    return created


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create the MentalSpace schema and seed default staff accounts.",
    )
    parser.add_argument(
        "--skip-user-seed",
        action="store_true",
        help="Do not create default admin/supervisor/clinician accounts.",
    )
    for role in DEFAULT_USERS:
        parser.add_argument(f"--{role}-email", help=f"Override email for the seeded {role} account")
        parser.add_argument(f"--{role}-password", help=f"Override password for the seeded {role} account")
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)

    init_db()
    created_users: List[Tuple[str, str, str]] = []
    if not args.skip_user_seed:
        with session_scope() as session:
            created_users = seed_default_users(session, args)

    print(f"Database initialised at {get_database_settings().url}")
    if args.skip_user_seed:
        print("User seeding skipped.")
    elif created_users:
        print("Created the following default accounts (update credentials before production use):")
        for email, password, role in created_users:
            print(f"  - {email} ({role}) -> {password}")
    else:
        print("Default users already existed; no credentials were changed.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
