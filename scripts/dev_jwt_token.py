# scripts/dev_jwt_token.py
"""Print a long-lived bearer token for local testing.

    python scripts/dev_jwt_token.py user_123
    python scripts/dev_jwt_token.py admin_1 --admin
    python scripts/dev_jwt_token.py activity-feed --role service
"""
import argparse
import sys
from datetime import timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from economy_engine.shared.utils.security import create_access_token


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("subject")
    parser.add_argument("--admin", action="store_true")
    parser.add_argument("--role", action="append", default=[])
    parser.add_argument("--days", type=int, default=30)
    args = parser.parse_args()

    token = create_access_token(
        {"sub": args.subject, "is_admin": args.admin, "roles": args.role},
        timedelta(days=args.days),
    )
    print(token)


if __name__ == "__main__":
    main()
