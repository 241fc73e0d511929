#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Generate Fingerprints for Existing Documents

Documents registered before their fingerprints were known (or whose hashes
were lost) are missing from the hash mapping table, so every sync request for
them has to fall back to a library scan. This backfill computes the content
and name fingerprints of those documents, stores them on the document record
and writes the matching hash mappings.

Documents are processed in batches; each batch is one transaction. A file that
is missing or yields no fingerprint counts as a failure of that document only.
Any other error rolls the current batch back and stops the run.
"""

from collections import OrderedDict
from typing import List, Optional

from sqlalchemy import or_

from ... import logger
from ...constants import DEFAULT_BATCH_SIZE, HASH_TYPE_CONTENT, HASH_TYPE_NAME
from ...library import Document
from ..errors import BatchProcessingError, FingerprintError
from .koreader import compute_content_fingerprint, compute_name_fingerprint
from .manager import HashMappingStore


class BackfillResult:
    def __init__(self, total=0, dry_run=False):
        self.total = total
        self.dry_run = dry_run
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.errors = []
        self.halted = False
        self.batch_error = None
        # owner -> [(document id, title, hashes present)], filled in dry-run mode
        self.selection = OrderedDict()
        # (document, content hash, name hash) for each document that got new hashes
        self.generated = []

    @property
    def ok(self):
        return not self.halted and self.failed == 0

    def __repr__(self):
        return '<BackfillResult processed={} succeeded={} failed={} halted={}>'.format(
            self.processed, self.succeeded, self.failed, self.halted)


def select_documents(session, owner=None, force=False) -> List[Document]:
    """Documents missing a content or name hash (every document with force), ordered by owner and title."""
    query = session.query(Document)
    if owner:
        query = query.filter(Document.owner == owner)
    if not force:
        query = query.filter(or_(Document.content_hash.is_(None), Document.name_hash.is_(None)))
    return query.order_by(Document.owner, Document.title).all()


def _hashes_present(document):
    present = ''
    if document.content_hash:
        present += 'C'
    if document.name_hash:
        present += 'N'
    return present or 'none'


def _process_document(document, library, mappings, force, log):
    """
    Compute and store the fingerprints of one document inside the current batch.

    Returns:
        (content_hash, name_hash) that were computed

    Raises:
        FingerprintError: the file is missing or no fingerprint could be produced
    """
    entry = library.locate(document)
    if entry is None:
        raise FingerprintError("File not found: {} for user {}".format(document.file_key, document.owner))

    content_hash = None
    if force or not document.content_hash:
        try:
            with entry.open() as stream:
                content_hash = compute_content_fingerprint(stream, entry.size)
        except (IOError, OSError) as e:
            log.debug("File not readable: %s: %s", entry.path, e)
        except FingerprintError as e:
            log.debug("No content fingerprint for %s: %s", entry.path, e.message)

    name_hash = None
    if force or not document.name_hash:
        try:
            name_hash = compute_name_fingerprint(entry.name)
        except FingerprintError as e:
            log.debug("No name fingerprint for %s: %s", entry.path, e.message)

    if not content_hash and not name_hash:
        raise FingerprintError("Failed to generate any hashes for: {}".format(document.file_key))

    if content_hash:
        document.content_hash = content_hash
        mappings.upsert(document.owner, content_hash, HASH_TYPE_CONTENT, document.id, commit=False)
    if name_hash:
        document.name_hash = name_hash
        mappings.upsert(document.owner, name_hash, HASH_TYPE_NAME, document.id, commit=False)
    return content_hash, name_hash


def generate_hashes(session, library, owner: Optional[str] = None, force: bool = False,
                    batch_size: int = DEFAULT_BATCH_SIZE, dry_run: bool = False,
                    mappings: Optional[HashMappingStore] = None, log=None) -> BackfillResult:
    """
    Backfill fingerprints and hash mappings for existing documents.

    Args:
        session: SQLAlchemy session of the settings database
        library: Library collaborator used to find each document's file
        owner: Only process documents of this owner
        force: Regenerate hashes even if they already exist
        batch_size: Number of documents per transaction
        dry_run: Only report which documents would be processed

    Returns:
        BackfillResult with counters, per-document errors and whether the run halted
    """
    log = log or logger.create()
    if batch_size <= 0:
        raise ValueError("Batch size must be greater than 0")
    mappings = mappings or HashMappingStore(session, log)

    documents = select_documents(session, owner, force)
    result = BackfillResult(total=len(documents), dry_run=dry_run)
    log.info("Hash backfill: %d documents selected (owner=%s, force=%s, batch size=%d)",
             result.total, owner or 'all', force, batch_size)

    if dry_run:
        for document in documents:
            result.selection.setdefault(document.owner, []).append(
                (document.id, document.title, _hashes_present(document)))
        return result

    for start in range(0, len(documents), batch_size):
        batch = documents[start:start + batch_size]
        batch_processed = 0
        batch_succeeded = 0
        batch_failed = 0
        try:
            for document in batch:
                try:
                    content_hash, name_hash = _process_document(document, library, mappings, force, log)
                except FingerprintError as e:
                    result.failed += 1
                    batch_failed += 1
                    result.errors.append(e.message)
                    log.warning("Hash backfill: %s", e.message)
                else:
                    result.succeeded += 1
                    batch_succeeded += 1
                    result.generated.append((document, content_hash, name_hash))
                result.processed += 1
                batch_processed += 1
            session.commit()
            log.debug("Hash backfill: committed batch of %d documents", len(batch))
        except Exception as e:
            session.rollback()
            # Nothing of this batch was written; all of its documents count as processed and failed
            result.processed += len(batch) - batch_processed
            result.succeeded -= batch_succeeded
            result.failed += len(batch) - batch_failed
            if batch_succeeded:
                del result.generated[-batch_succeeded:]
            result.batch_error = BatchProcessingError("Batch processing failed: {}".format(e),
                                                      result.processed, result.succeeded, result.failed)
            result.errors.append(result.batch_error.message)
            result.halted = True
            log.error_or_exception(result.batch_error.message)
            break

    log.info("Hash backfill finished: %d processed, %d succeeded, %d failed%s",
             result.processed, result.succeeded, result.failed, " (halted)" if result.halted else "")
    return result
