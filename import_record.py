#!/usr/bin/env python3
"""
Import a record from Discogs into the collection from the terminal.

Usage:
    python import_record.py --owner <user_id> "miles davis kind of blue"
    python import_record.py --owner <user_id> --barcode 074646393524
    python import_record.py --owner <user_id> --wishlist "a love supreme"

Lists the matches, lets you page through them, fetches the chosen release,
copies its cover into local storage and stores the record.
"""

import sys
import sqlite3
import argparse
import logging

from config import Config
from init_db import create_database_schema
from collection_db import create_vinyl, create_wishlist_item
from discogs_api import get_global_client, shutdown_global_client
from image_proxy import initialize_image_store, shutdown_image_store
from import_workflow import ImportWorkflow, WorkflowSnapshot


def print_results(snapshot: WorkflowSnapshot, start: int = 0):
    for index, result in enumerate(snapshot.results[start:], start + 1):
        details = ', '.join(filter(None, [result.year, result.format, result.label,
                                          result.country]))
        print(f"{index:3d}. {result.artist} - {result.album} ({details}) [{result.id}]")
    if snapshot.pagination:
        print(f"     page {snapshot.pagination['page']} of {snapshot.pagination['pages']},"
              f" {snapshot.pagination['total']} matches")


def choose(workflow: ImportWorkflow, prompt=input):
    """Prompt until a result is picked; returns the release id or None."""
    snapshot = workflow.snapshot()
    print_results(snapshot)

    while True:
        answer = prompt("Pick a number, 'm' for more, 'q' to quit: ").strip().lower()
        if answer == 'q':
            return None
        if answer == 'm':
            shown = len(snapshot.results)
            if not workflow.load_more():
                print("No more results")
                continue
            snapshot = workflow.snapshot()
            if snapshot.error:
                print(f"Error: {snapshot.error}")
            print_results(snapshot, shown)
            continue
        if answer.isdigit() and 1 <= int(answer) <= len(snapshot.results):
            return snapshot.results[int(answer) - 1].id
        print("Not a valid choice")


def main(argv=None, prompt=input) -> int:
    parser = argparse.ArgumentParser(description='Import a record from Discogs')
    parser.add_argument('query', nargs='*', help='Free-text search')
    parser.add_argument('--barcode', help='Search by UPC/EAN barcode instead')
    parser.add_argument('--owner', required=True, help='Owner user id to store the record under')
    parser.add_argument('--wishlist', action='store_true', help='Add to the wishlist')
    parser.add_argument('--database', default=str(Config.DATABASE_PATH))
    parser.add_argument('--covers', default=str(Config.COVERS_DIR))
    args = parser.parse_args(argv)

    if not args.barcode and not args.query:
        parser.error('a search query or --barcode is required')

    workflow = ImportWorkflow(get_global_client(), initialize_image_store(args.covers))
    try:
        if args.barcode:
            snapshot = workflow.search_by_barcode(args.barcode)
        else:
            workflow.search(' '.join(args.query), immediate=True)
            snapshot = workflow.snapshot()

        if snapshot.error:
            print(f"Error: {snapshot.error}", file=sys.stderr)
            return 1
        if not snapshot.results:
            print("No matches found")
            return 1

        release_id = choose(workflow, prompt)
        if release_id is None:
            return 0

        form = workflow.select_result(release_id)
        if form is None:
            print(f"Error: {workflow.snapshot().error}", file=sys.stderr)
            return 1
        if not form.cover_art_url:
            print("No cover image was imported")
    finally:
        workflow.close()
        shutdown_image_store()
        shutdown_global_client()

    create_database_schema(args.database)
    conn = sqlite3.connect(args.database)
    conn.row_factory = sqlite3.Row
    try:
        if args.wishlist:
            row = create_wishlist_item(conn, args.owner, form.to_dict())
        else:
            row = create_vinyl(conn, args.owner, form.to_dict())
    finally:
        conn.close()

    print(f"Stored {row['artist']} - {row['album']} ({row['id']})")
    return 0

if __name__ == '__main__':
    logging.basicConfig(level=logging.WARNING)
    sys.exit(main())
