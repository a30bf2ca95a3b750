#!/usr/bin/env python3
"""Database initialization script for VinylShelf."""

import sqlite3
from pathlib import Path
from config import Config

SCHEMA = [
    # Profiles (one owner, everyone else read-only)
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        user_id TEXT UNIQUE NOT NULL,
        is_owner BOOLEAN NOT NULL DEFAULT 0,
        api_token_hash TEXT UNIQUE,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );
    """,
    # Vinyl collection
    """
    CREATE TABLE IF NOT EXISTS vinyls (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        artist TEXT NOT NULL,
        album TEXT NOT NULL,
        year INTEGER,
        label TEXT,
        catalog_number TEXT,
        pressing_info TEXT,
        country TEXT,
        format TEXT,
        rpm INTEGER,
        sleeve_condition TEXT,
        media_condition TEXT,
        cover_art_url TEXT,
        custom_photos TEXT NOT NULL DEFAULT '[]',  -- JSON array
        genre TEXT NOT NULL DEFAULT '[]',  -- JSON array
        notes TEXT,
        purchase_info TEXT,
        discogs_id TEXT,
        tracklist TEXT,  -- JSON array of {position, title, duration}
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );
    """,
    # Wishlist
    """
    CREATE TABLE IF NOT EXISTS wishlist_items (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        artist TEXT NOT NULL,
        album TEXT NOT NULL,
        year INTEGER,
        label TEXT,
        cover_art_url TEXT,
        target_price REAL,
        notes TEXT,
        position INTEGER NOT NULL DEFAULT 0,
        discogs_id TEXT,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_vinyls_created_at ON vinyls (created_at);",
    "CREATE INDEX IF NOT EXISTS idx_vinyls_artist ON vinyls (artist);",
    "CREATE INDEX IF NOT EXISTS idx_vinyls_year ON vinyls (year);",
    "CREATE INDEX IF NOT EXISTS idx_wishlist_artist ON wishlist_items (artist);",
    "CREATE INDEX IF NOT EXISTS idx_wishlist_position ON wishlist_items (position);",
]


def create_database_schema(database_path: Path):
    """Create all tables and indexes in the given database file."""
    database_path = Path(database_path)
    database_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(database_path))
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON;")
        for statement in SCHEMA:
            cursor.execute(statement)
        conn.commit()
    finally:
        conn.close()


def init_database(database_path: Path = None):
    """Initialize the VinylShelf database with required tables."""
    database_path = Path(database_path or Config.DATABASE_PATH)
    create_database_schema(database_path)

    print(f"Database initialized at: {database_path}")
    print("Tables created: profiles, vinyls, wishlist_items")

if __name__ == "__main__":
    init_database()
