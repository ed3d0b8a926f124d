from __future__ import annotations

import argparse
from datetime import datetime, timedelta

import jwt

from backend.gradia.auth import KNOWN_ROLES


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate JWT for Gradia pipeline API roles.")
    parser.add_argument("--secret", required=True)
    parser.add_argument("--subject", required=True, help="User id; candidates use their candidate id.")
    parser.add_argument(
        "--roles",
        required=True,
        help=f"Comma-separated roles out of: {', '.join(sorted(KNOWN_ROLES))}.",
    )
    parser.add_argument("--hours", type=int, default=12)
    parser.add_argument("--algorithm", default="HS256")
    args = parser.parse_args()

    roles = [item.strip() for item in args.roles.split(",") if item.strip()]
    unknown = sorted(set(roles) - KNOWN_ROLES)
    if unknown:
        parser.error(f"unknown roles: {', '.join(unknown)}")

    payload = {
        "sub": args.subject,
        "roles": roles,
        "exp": datetime.utcnow() + timedelta(hours=args.hours),
    }
    print(jwt.encode(payload, args.secret, algorithm=args.algorithm))


if __name__ == "__main__":
    main()
