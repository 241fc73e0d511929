# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Shared pytest fixtures and configuration for KOReader Companion tests.

This module contains common fixtures that are automatically available
to all tests without needing to import them explicitly. Every test gets its
own SQLite database and library directory below tmp_path.
"""

import hashlib
import pytest

from koreader_companion import ub
from koreader_companion.config import ServerConfig


# ============================================================================
# Database / Store Fixtures
# ============================================================================

@pytest.fixture
def library_root(tmp_path):
    """Library root with per-owner subdirectories created on demand by make_book."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def db_session(tmp_path):
    """Scoped session on a fresh settings database."""
    session = ub.init_db(str(tmp_path / "app.db"))
    yield session
    ub.dispose()


@pytest.fixture
def library(library_root, db_session):
    from koreader_companion.library import FilesystemLibrary
    return FilesystemLibrary(str(library_root), db_session)


@pytest.fixture
def mappings(db_session):
    from koreader_companion.progress_syncing import HashMappingStore
    return HashMappingStore(db_session)


@pytest.fixture
def progress_store(db_session):
    from koreader_companion.progress_syncing import SyncProgressStore
    return SyncProgressStore(db_session)


@pytest.fixture
def resolver(library, mappings):
    from koreader_companion.progress_syncing import ResolutionEngine
    return ResolutionEngine(library, mappings)


@pytest.fixture
def make_book(library_root):
    """
    Factory writing a document file into an owner's library directory.

    Usage:
        path = make_book("reader", "Author/Book.epub", b"content")
    """
    def _make_book(owner, relative_path, content=b"x" * 2000):
        path = library_root / owner / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path
    return _make_book


# ============================================================================
# Flask App Fixtures
# ============================================================================

@pytest.fixture
def app_config(tmp_path, library_root):
    return ServerConfig(settings_path=str(tmp_path / "app.db"),
                        library_path=str(library_root),
                        sync_enabled=True,
                        log_file='',
                        log_level='WARNING')


@pytest.fixture
def app(app_config):
    from koreader_companion import create_app
    application = create_app(app_config)
    application.config['TESTING'] = True
    yield application
    ub.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sync_user(app):
    """User 'reader' with sync password 'secret'."""
    with app.app_context():
        ub.set_sync_password(ub.session, 'reader', 'secret')
    return 'reader'


@pytest.fixture
def auth_headers(sync_user):
    """Headers the KOReader sync plugin sends: the key is the md5 of the password."""
    return {
        'x-auth-user': sync_user,
        'x-auth-key': hashlib.md5(b'secret').hexdigest(),
        'Accept': 'application/vnd.koreader.v1+json',
    }


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a fast, isolated unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as exercising the HTTP protocol through the Flask test client"
    )
