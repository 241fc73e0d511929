# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Command line interface.

Usage:
    koreader-companion serve [--host HOST] [--port PORT]
    koreader-companion set-password USER [--password PASSWORD]
    koreader-companion generate-hashes [--user USER] [--force] [--batch-size N] [--dry-run] [--show-details]
    koreader-companion forget-document USER DOCUMENT_ID

Global options (--settings-path, --library-path, --log-file, --log-level)
override the KOSYNC_* environment variables.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import SQLAlchemyError

from . import logger, ub
from .config import ServerConfig
from .constants import DEFAULT_BATCH_SIZE, STABLE_VERSION

MAX_ERRORS_SHOWN = 10


def _build_parser():
    parser = argparse.ArgumentParser(
        prog='koreader-companion',
        description='Reading progress sync server for KOReader devices',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--version', action='version', version='%(prog)s ' + STABLE_VERSION)
    parser.add_argument('-p', '--settings-path', dest='settings_path',
                        help='Path to the settings database (default: $KOSYNC_SETTINGS_PATH or ./app.db)')
    parser.add_argument('-l', '--library-path', dest='library_path',
                        help='Path to the library root (default: $KOSYNC_LIBRARY_PATH or ./library)')
    parser.add_argument('--log-file', dest='log_file', help='Log file, empty for stderr')
    parser.add_argument('--log-level', dest='log_level', help='Log level (DEBUG, INFO, WARNING, ...)')

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    serve = subparsers.add_parser('serve', help='Run the sync server')
    serve.add_argument('--host', help='Listen address')
    serve.add_argument('--port', type=int, help='Listen port')
    serve.add_argument('--access-log', dest='access_log', help='Write an access log to this file')

    password = subparsers.add_parser('set-password', help='Create a user or change its sync password')
    password.add_argument('user', help='User name as entered in the KOReader sync plugin')
    password.add_argument('--password', help='Sync password (prompted for if omitted)')

    hashes = subparsers.add_parser('generate-hashes', help='Generate fingerprints for existing documents')
    hashes.add_argument('-u', '--user', help='Process only documents of this user')
    hashes.add_argument('-f', '--force', action='store_true',
                        help='Regenerate hashes even if they already exist')
    hashes.add_argument('-b', '--batch-size', dest='batch_size', type=int, default=DEFAULT_BATCH_SIZE,
                        help='Number of documents per transaction (default: %d)' % DEFAULT_BATCH_SIZE)
    hashes.add_argument('--dry-run', dest='dry_run', action='store_true',
                        help='Show what would be processed without making any changes')
    hashes.add_argument('-d', '--show-details', dest='show_details', action='store_true',
                        help='Show detailed progress information')

    forget = subparsers.add_parser('forget-document',
                                   help='Delete a document with its hash mappings and sync progress')
    forget.add_argument('user', help='Owner of the document')
    forget.add_argument('document_id', type=int, help='Document id')
    return parser


def _load_config(args):
    config = ServerConfig.from_env()
    return config.update(settings_path=args.settings_path,
                         library_path=args.library_path,
                         log_file=args.log_file,
                         log_level=args.log_level)


def _open_library(config):
    from .library import FilesystemLibrary
    logger.setup(config.log_file, config.log_level)
    session = ub.init_db(config.settings_path)
    return session, FilesystemLibrary(config.library_path, session)


def cmd_serve(args, config):
    from . import create_app
    from .server import WebServer

    config.update(host=args.host, port=args.port, access_log=args.access_log)
    app = create_app(config)
    web_server = WebServer()
    web_server.init_app(app, config)
    return 0 if web_server.start() else 1


def cmd_set_password(args, config):
    if not ub.is_valid_user_name(args.user):
        print(f"ERROR: Invalid user name '{args.user}': it must be usable as a directory name")
        return 1
    password = args.password
    if password is None:
        password = getpass.getpass('Sync password for {}: '.format(args.user))
        if password != getpass.getpass('Repeat password: '):
            print('ERROR: Passwords do not match')
            return 1
    if not password:
        print('ERROR: Password must not be empty')
        return 1

    logger.setup(config.log_file, config.log_level)
    session = ub.init_db(config.settings_path)
    try:
        ub.set_sync_password(session, args.user, password)
    except SQLAlchemyError as e:
        print(f"ERROR: Database error: {e}")
        return 1
    finally:
        ub.dispose()
    print(f"Sync password stored for user '{args.user}'")
    return 0


def _print_dry_run(result, show_details):
    print('Documents that would be processed:')
    print()
    for owner, documents in result.selection.items():
        print(f"User: {owner} ({len(documents)} documents)")
        if show_details:
            for document_id, title, present in documents:
                print(f"  - {title} (ID: {document_id}, Current hashes: {present})")
        print()


def cmd_generate_hashes(args, config):
    from .progress_syncing.checksums.backfill import generate_hashes

    if args.batch_size <= 0:
        print('ERROR: Batch size must be greater than 0')
        return 1

    session, library = _open_library(config)
    try:
        if args.user and ub.get_user(session, args.user) is None:
            print(f"ERROR: User '{args.user}' not found")
            return 1

        print('KOReader Companion Hash Generation')
        print()
        if args.dry_run:
            print('DRY RUN MODE - No changes will be made')
        print(f"Processing documents for user: {args.user}" if args.user else 'Processing documents for all users')
        if args.force:
            print('Force mode enabled - will regenerate existing hashes')
        print(f"Batch size: {args.batch_size}")
        print()

        result = generate_hashes(session, library, owner=args.user, force=args.force,
                                 batch_size=args.batch_size, dry_run=args.dry_run)
        if result.total == 0:
            print('✓ No documents found that need hash generation.')
            return 0

        print(f"Found {result.total} documents that need hash generation")
        if result.dry_run:
            _print_dry_run(result, args.show_details)
            return 0

        if args.show_details:
            for document, content_hash, name_hash in result.generated:
                hashes = []
                if content_hash:
                    hashes.append(f"Content: {content_hash}")
                if name_hash:
                    hashes.append(f"Name: {name_hash}")
                print(f"  ✓ {document.title} ({document.owner}): {', '.join(hashes)}")

        if result.halted:
            print(f"ERROR: {result.batch_error.message}")

        print()
        print("=" * 60)
        print("Summary:")
        print(f"  Total processed: {result.processed}")
        print(f"  Successful:      {result.succeeded}")
        print(f"  Failed:          {result.failed}")
        print("=" * 60)

        if result.failed and args.show_details:
            print()
            print('Errors encountered:')
            for error in result.errors[:MAX_ERRORS_SHOWN]:
                print(f"  - {error}")
            if len(result.errors) > MAX_ERRORS_SHOWN:
                print(f"  ... and {len(result.errors) - MAX_ERRORS_SHOWN} more errors")

        return 0 if result.ok else 1
    finally:
        ub.dispose()


def cmd_forget_document(args, config):
    from .progress_syncing import HashMappingStore, SyncProgressStore, PersistenceError

    session, library = _open_library(config)
    try:
        removed = library.remove_document(args.user, args.document_id,
                                          HashMappingStore(session), SyncProgressStore(session))
    except PersistenceError as e:
        print(f"ERROR: {e.message}")
        return 1
    finally:
        ub.dispose()

    if not removed:
        print(f"ERROR: Document {args.document_id} not found for user '{args.user}'")
        return 1
    print(f"Removed document {args.document_id} of user '{args.user}'")
    return 0


COMMANDS = {
    'serve': cmd_serve,
    'set-password': cmd_set_password,
    'generate-hashes': cmd_generate_hashes,
    'forget-document': cmd_forget_document,
}


def main(argv=None):
    args = _build_parser().parse_args(argv)
    config = _load_config(args)
    try:
        return COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user. Exiting...")
        return 130


if __name__ == '__main__':
    sys.exit(main())
