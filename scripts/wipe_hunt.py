#!/usr/bin/env python3
"""
Wipe all hunt data (spawns, map nodes, reservations, locations, anomaly flags)
through the admin endpoint of a running gateway.

Usage:
    ADMIN_API_KEY=... python scripts/wipe_hunt.py --dry-run
    ADMIN_API_KEY=... python scripts/wipe_hunt.py --base-url https://hunt.example.com
"""

import os
import sys
import json
import argparse
from typing import Optional, Tuple

import httpx

WIPE_PATH = "/api/admin/hunt/wipe"
CONFIRMATION = {
    "confirm": "wipe",
    "confirm2": "I_UNDERSTAND_THIS_DELETES_HUNT_DATA",
}


# Colors for terminal output
class Colors:
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    BOLD = '\033[1m'
    RESET = '\033[0m'


def colored_print(message, color=None):
    """Print message with color if terminal supports it"""
    if color and sys.stdout.isatty():
        print(f"{color}{message}{Colors.RESET}")
    else:
        print(message)


def default_base_url() -> str:
    return f"http://localhost:{os.getenv('PORT', '8000')}"


def wipe_hunt(
    base_url: str,
    api_key: str,
    dry_run: bool = False,
    timeout: float = 30.0,
    transport: Optional[httpx.BaseTransport] = None
) -> Tuple[int, dict]:
    """
    Call the wipe endpoint.

    Returns:
        (status_code, response JSON)

    Raises:
        httpx.HTTPError: The gateway could not be reached
        ValueError: The gateway answered with something other than JSON
    """
    params = {"dryRun": "1"} if dry_run else None
    with httpx.Client(base_url=base_url, timeout=timeout, transport=transport) as client:
        response = client.post(
            WIPE_PATH,
            params=params,
            json=CONFIRMATION,
            headers={"x-admin-api-key": api_key},
        )
    return response.status_code, response.json()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Wipe hunt data through the admin API")
    parser.add_argument("-n", "--dry-run", action="store_true",
                        help="Report row counts without deleting anything")
    parser.add_argument("--base-url", default=default_base_url(),
                        help="Gateway base URL (default: http://localhost:$PORT)")
    args = parser.parse_args(argv)

    api_key = os.getenv("ADMIN_API_KEY")
    if not api_key:
        colored_print("ERROR: ADMIN_API_KEY environment variable is not set", Colors.RED + Colors.BOLD)
        return 1

    colored_print(f"Calling POST {args.base_url}{WIPE_PATH} ...", Colors.BLUE)
    if args.dry_run:
        colored_print("(DRY RUN - no data will be deleted)", Colors.YELLOW)

    try:
        status, data = wipe_hunt(args.base_url, api_key, dry_run=args.dry_run)
    except httpx.HTTPError as e:
        colored_print(f"ERROR: Failed to call wipe endpoint: {e}", Colors.RED + Colors.BOLD)
        return 1
    except ValueError:
        colored_print("ERROR: Gateway returned a non-JSON response", Colors.RED + Colors.BOLD)
        return 1

    if status >= 400:
        colored_print(f"ERROR: {status} {json.dumps(data)}", Colors.RED + Colors.BOLD)
        return 1

    colored_print("\n=== HUNT DATA WIPE RESULT ===\n", Colors.GREEN + Colors.BOLD)
    print(json.dumps(data, indent=2))
    colored_print("\n=============================\n", Colors.GREEN + Colors.BOLD)
    return 0


if __name__ == "__main__":
    sys.exit(main())
