#!/usr/bin/env python3
"""
VinylShelf startup script
"""

import os
from atexit import register

from app import create_app, shutdown
from config import Config

def main():
    """Main startup function."""
    print("Starting VinylShelf...")

    if not os.environ.get(Config.DISCOGS_TOKEN_ENV):
        print(f"Warning: {Config.DISCOGS_TOKEN_ENV} is not set; Discogs import is unavailable")

    # Set environment variables for development
    if 'FLASK_ENV' not in os.environ:
        os.environ['FLASK_ENV'] = 'development'

    app = create_app()
    register(shutdown)

    print(f"Database: {Config.DATABASE_PATH}")
    print(f"Covers directory: {Config.COVERS_DIR}")
    print(f"Starting server on http://0.0.0.0:{os.environ.get('PORT', 5000)}")
    print("Press Ctrl+C to stop")

    app.run(
        host='0.0.0.0',
        port=int(os.environ.get('PORT', 5000)),
        debug=os.environ.get('FLASK_ENV') == 'development'
    )

if __name__ == '__main__':
    main()
