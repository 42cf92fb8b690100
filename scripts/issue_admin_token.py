"""Print a signed admin token for the trigger API."""

from __future__ import annotations

import sys

from dotenv import load_dotenv

from dealfeed.utils.tokens import generate_admin_token


def main() -> None:
    load_dotenv()
    if len(sys.argv) != 2:
        raise SystemExit("usage: issue_admin_token.py <operator>")
    print(generate_admin_token(sys.argv[1]))


if __name__ == "__main__":
    main()
