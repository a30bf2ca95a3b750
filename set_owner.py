#!/usr/bin/env python3
"""
Mark a user as the collection owner and issue a fresh API token.

Usage:
    python set_owner.py <user_id> [--revoke]

The token is printed once; only its hash is stored.
"""

import sys
import sqlite3
import argparse
import logging

from config import Config
from init_db import create_database_schema
from collection_db import set_owner


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Grant or revoke owner rights')
    parser.add_argument('user_id', help='Identifier of the user profile')
    parser.add_argument('--revoke', action='store_true',
                        help='Keep the profile but drop its owner flag')
    parser.add_argument('--database', default=str(Config.DATABASE_PATH),
                        help='Path to the SQLite database')
    args = parser.parse_args(argv)

    create_database_schema(args.database)

    conn = sqlite3.connect(args.database)
    conn.row_factory = sqlite3.Row
    try:
        profile, token = set_owner(conn, args.user_id, is_owner=not args.revoke)
    except sqlite3.Error as e:
        print(f"Failed to update profile: {e}", file=sys.stderr)
        return 1
    finally:
        conn.close()

    print(f"Profile {profile['id']} for {profile['user_id']} (owner={profile['is_owner']})")
    print(f"API token: {token}")
    return 0

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
