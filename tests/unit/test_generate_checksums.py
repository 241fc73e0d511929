# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Unit tests for the hash backfill

Covers document selection, batching, per-document failures and the
halt-on-error behavior of a failing batch.
"""

import hashlib

import pytest

from koreader_companion.library import Document
from koreader_companion.progress_syncing.checksums.backfill import generate_hashes, select_documents
from koreader_companion.progress_syncing.models import HashMapping


def _register(library, owner, relative_path, make_book, content=b"x" * 2000):
    make_book(owner, relative_path, content)
    entry = library.get_entry(owner, relative_path)
    return library.ensure_document_record(owner, entry)


class _ExplodingMappings:
    """Mapping store raising an unexpected error on every write."""

    def upsert(self, *args, **kwargs):
        raise RuntimeError("disk on fire")


class _FailingLateMappings:
    """Mapping store delegating to a real one until a given write fails."""

    def __init__(self, store, fail_on):
        self.store = store
        self.fail_on = fail_on
        self.writes = 0

    def upsert(self, *args, **kwargs):
        self.writes += 1
        if self.writes == self.fail_on:
            raise RuntimeError("disk on fire")
        return self.store.upsert(*args, **kwargs)


@pytest.mark.unit
class TestSelectDocuments:
    """Test select_documents"""

    def test_selects_documents_missing_hashes(self, library, make_book, db_session):
        first = _register(library, "reader", "A.epub", make_book)
        second = _register(library, "reader", "B.epub", make_book)
        db_session.query(Document).filter(Document.id == second).one().content_hash = "c" * 32
        db_session.query(Document).filter(Document.id == second).one().name_hash = "d" * 32
        db_session.commit()

        assert [d.id for d in select_documents(db_session)] == [first]
        assert {d.id for d in select_documents(db_session, force=True)} == {first, second}

    def test_filters_by_owner(self, library, make_book, db_session):
        _register(library, "reader", "A.epub", make_book)
        other = _register(library, "writer", "A.epub", make_book)
        assert [d.id for d in select_documents(db_session, owner="writer")] == [other]


@pytest.mark.unit
class TestGenerateHashes:
    """Test generate_hashes"""

    def test_fills_hashes_and_mappings(self, library, mappings, make_book, db_session):
        document_id = _register(library, "reader", "Author/Book.epub", make_book, b"x" * 500)

        result = generate_hashes(db_session, library)

        assert result.ok
        assert (result.processed, result.succeeded, result.failed) == (1, 1, 0)
        document = db_session.query(Document).filter(Document.id == document_id).one()
        assert document.content_hash == hashlib.md5(b"x" * 500).hexdigest()
        assert document.name_hash == hashlib.md5(b"Book.epub").hexdigest()
        assert mappings.lookup_document("reader", document.content_hash) == document_id
        assert mappings.lookup_document("reader", document.name_hash) == document_id

    def test_second_run_has_nothing_to_do(self, library, make_book, db_session):
        _register(library, "reader", "Book.epub", make_book)
        generate_hashes(db_session, library)

        assert generate_hashes(db_session, library).total == 0

    def test_force_regenerates(self, library, make_book, db_session):
        _register(library, "reader", "Book.epub", make_book)
        generate_hashes(db_session, library)

        result = generate_hashes(db_session, library, force=True)
        assert result.total == 1
        assert result.succeeded == 1
        assert db_session.query(HashMapping).count() == 2

    def test_missing_file_is_a_document_failure(self, library, make_book, db_session):
        path = make_book("reader", "Gone.epub")
        _register(library, "reader", "Kept.epub", make_book)
        library.ensure_document_record("reader", library.get_entry("reader", "Gone.epub"))
        path.unlink()

        result = generate_hashes(db_session, library)

        assert result.halted is False
        assert (result.processed, result.succeeded, result.failed) == (2, 1, 1)
        assert "File not found" in result.errors[0]
        assert not result.ok

    def test_processes_in_batches(self, library, make_book, db_session):
        for index in range(5):
            _register(library, "reader", "Book%d.epub" % index, make_book, bytes([index]) * 100)

        result = generate_hashes(db_session, library, batch_size=2)

        assert result.succeeded == 5
        assert db_session.query(Document).filter(Document.content_hash.is_(None)).count() == 0

    def test_unexpected_error_rolls_back_and_halts(self, library, make_book, db_session):
        _register(library, "reader", "A.epub", make_book)
        _register(library, "reader", "B.epub", make_book)

        result = generate_hashes(db_session, library, batch_size=1, mappings=_ExplodingMappings())

        assert result.halted is True
        assert (result.processed, result.succeeded, result.failed) == (1, 0, 1)
        assert "disk on fire" in result.batch_error.message
        assert db_session.query(Document).filter(Document.content_hash.isnot(None)).count() == 0

    def test_halted_batch_counts_are_consistent(self, library, mappings, make_book, db_session):
        _register(library, "reader", "A.epub", make_book, b"a" * 2000)
        _register(library, "reader", "B.epub", make_book, b"b" * 2000)

        # the third write is the first mapping of the second document
        result = generate_hashes(db_session, library, batch_size=2,
                                 mappings=_FailingLateMappings(mappings, fail_on=3))

        assert result.halted is True
        assert (result.processed, result.succeeded, result.failed) == (2, 0, 2)
        assert result.processed == result.succeeded + result.failed
        assert result.generated == []
        assert (result.batch_error.processed, result.batch_error.failed) == (2, 2)
        assert db_session.query(HashMapping).count() == 0

    def test_dry_run_changes_nothing(self, library, make_book, db_session):
        _register(library, "reader", "A.epub", make_book)
        _register(library, "writer", "B.epub", make_book)

        result = generate_hashes(db_session, library, dry_run=True)

        assert result.dry_run is True
        assert list(result.selection) == ["reader", "writer"]
        assert result.selection["reader"][0][2] == "none"
        assert db_session.query(HashMapping).count() == 0

    def test_rejects_non_positive_batch_size(self, library, db_session):
        with pytest.raises(ValueError):
            generate_hashes(db_session, library, batch_size=0)
