#!/usr/bin/env python3
"""
Hash Password Script

Prints a bcrypt credentials entry for the YAML config file named by LOGIN_GUARD_CONFIG.

Usage:
    python scripts/hash_password.py --identity alice@example.com --password 'S3cret!'

    # Output:
    # credentials:
    #   alice@example.com: "$2b$12$..."
"""

import os
import sys
import argparse
import getpass

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)


def main():
    from login_guard.services.credential_verifier import DEFAULT_ROUNDS, hash_password
    from login_guard.services.login_attempt_gate import normalize_identity

    parser = argparse.ArgumentParser(description="Generate a bcrypt credentials entry")
    parser.add_argument("--identity", required=True, help="Username or email")
    parser.add_argument("--password", help="Password (prompted when omitted)")
    parser.add_argument("--rounds", type=int, default=DEFAULT_ROUNDS, help="bcrypt cost factor")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("[ERROR] Password must not be empty")
        return 1

    try:
        hashed = hash_password(password, rounds=args.rounds)
    except ValueError as e:
        print(f"[ERROR] {e}")
        return 1

    print("credentials:")
    print(f'  {normalize_identity(args.identity)}: "{hashed}"')
    return 0


if __name__ == "__main__":
    sys.exit(main())
