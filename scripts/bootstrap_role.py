#!/usr/bin/env python3
"""Emit deterministic SQL that assigns a tutordesk role to a Supabase user."""

from __future__ import annotations

import argparse

ROLES = ("student", "tutor", "admin")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None) -> str:
    if role not in ROLES:
        raise ValueError(f"unsupported role: {role}")
    role_value = _quote_sql(role)

    if user_id:
        users_where = f"id = {_quote_sql(user_id)}::uuid"
        profiles_where = f"user_id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        users_where = f"email = {_quote_sql(email)}"
        profiles_where = f"user_id in (select id from auth.users where {users_where})"

    return f"""-- tutordesk role bootstrap SQL
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {users_where};

update profiles
set role = {role_value}
where {profiles_where};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to assign a tutordesk role to a Supabase user.")
    parser.add_argument(
        "--role",
        choices=ROLES,
        default="tutor",
        help="Role to assign in auth.users.raw_app_meta_data.role and profiles.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    args = parser.parse_args()

    print(render_sql(role=args.role, user_id=args.user_id, email=args.email))


if __name__ == "__main__":
    main()
