"""Issue a bearer token for the admin API.

Run: uv run python scripts/issue_admin_token.py ops@example.com

The email must also be listed in ADMIN_EMAILS for the token to be accepted.
"""

import argparse
import sys

from waitlist.config import get_settings
from waitlist.security.web_auth import issue_admin_token


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email", help="admin email address")
    args = parser.parse_args()

    settings = get_settings()
    email = args.email.strip().lower()
    if email not in settings.admin_email_list():
        print(f"WARNING: {email} is not in ADMIN_EMAILS; the API will answer 403", file=sys.stderr)
    print(issue_admin_token(email, settings=settings))


if __name__ == "__main__":
    main()
