# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Filesystem library used by the sync server.

Each owner has a directory below the library root; every ebook file inside it
(recursively) is a document. A row in document_metadata is created for a file
the first time it is needed (hash backfill or fingerprint resolution), so a
file copied into the library is picked up without a separate indexing step.
"""

import os
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.exc import SQLAlchemyError

from . import logger
from .constants import EBOOK_EXTENSIONS
from .ub import Base
from .progress_syncing.errors import PersistenceError


class Document(Base):
    __tablename__ = 'document_metadata'
    __table_args__ = (UniqueConstraint('owner', 'file_key', name='document_unique'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(64), nullable=False, index=True)
    file_key = Column(String, nullable=False)  # path relative to the owner's directory
    file_path = Column(String, nullable=False)
    title = Column(String, default='')
    author = Column(String, default='')
    content_hash = Column(String(32), index=True)
    name_hash = Column(String(32), index=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return '<Document %r (%s, %s)>' % (self.title, self.owner, self.file_key)


class LibraryEntry:
    """A document file as it currently exists in the library."""

    def __init__(self, file_key, name, path, size, title=None, author=''):
        self.file_key = file_key
        self.name = name
        self.path = path
        self.size = size
        self.title = title if title is not None else os.path.splitext(name)[0]
        self.author = author

    def open(self):
        return open(self.path, 'rb')

    def __repr__(self):
        return '<LibraryEntry %r (%d bytes)>' % (self.file_key, self.size)


class FilesystemLibrary:
    def __init__(self, library_path, session, log=None):
        self.library_path = library_path
        self.session = session
        self.log = log or logger.create()

    def owner_path(self, owner):
        # Owner names come from the database, but never let one escape the library root
        path = os.path.realpath(os.path.join(self.library_path, owner))
        root = os.path.realpath(self.library_path)
        if os.path.dirname(path) != root:
            raise ValueError("Invalid owner name: {!r}".format(owner))
        return path

    def list_documents(self, owner) -> List[LibraryEntry]:
        """Every ebook file below the owner's directory, sorted by relative path."""
        base = self.owner_path(owner)
        if not os.path.isdir(base):
            self.log.debug("No library directory for %s at %s", owner, base)
            return []

        entries = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames.sort()
            for filename in sorted(filenames):
                extension = os.path.splitext(filename)[1][1:].lower()
                if extension not in EBOOK_EXTENSIONS:
                    continue
                path = os.path.join(dirpath, filename)
                try:
                    size = os.path.getsize(path)
                except OSError as e:
                    self.log.debug("Skipping %s: %s", path, e)
                    continue
                file_key = os.path.relpath(path, base).replace(os.sep, '/')
                entries.append(LibraryEntry(file_key, filename, path, size))
        return entries

    def get_entry(self, owner, file_key) -> Optional[LibraryEntry]:
        base = self.owner_path(owner)
        path = os.path.realpath(os.path.join(base, file_key))
        if not path.startswith(base + os.sep) or not os.path.isfile(path):
            return None
        return LibraryEntry(file_key, os.path.basename(path), path, os.path.getsize(path))

    def locate(self, document: Document) -> Optional[LibraryEntry]:
        """Current file of a stored document, or None if it is gone."""
        return self.get_entry(document.owner, document.file_key)

    def get_document(self, owner, document_id) -> Optional[Document]:
        return self.session.query(Document).filter(Document.owner == owner,
                                                   Document.id == document_id).one_or_none()

    def ensure_document_record(self, owner, entry: LibraryEntry) -> int:
        """Id of the document_metadata row for a library file, creating it if needed."""
        try:
            document = self.session.query(Document).filter(Document.owner == owner,
                                                           Document.file_key == entry.file_key).one_or_none()
            if document:
                return document.id

            document = Document(owner=owner,
                                file_key=entry.file_key,
                                file_path=entry.path,
                                title=entry.title,
                                author=entry.author)
            self.session.add(document)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to register document %s for %s: %s", entry.file_key, owner, e)
            raise PersistenceError("Failed to register document", e)

        self.log.info("Registered document %s (%s) for %s", document.id, entry.file_key, owner)
        return document.id

    def remove_document(self, owner, document_id, mappings, progress_store) -> bool:
        """
        Delete a document together with its hash mappings and the progress of its fingerprints.

        Progress is only found through the document's mappings; progress stored
        under a fingerprint that was never mapped stays behind.

        Returns:
            False if no such document exists
        """
        try:
            document = self.get_document(owner, document_id)
            if document is None:
                return False

            fingerprints = mappings.all_fingerprints_for(owner, document_id)
            progress_removed = progress_store.delete_for(owner, fingerprints, commit=False)
            mappings_removed = mappings.delete_all_for(owner, document_id, commit=False)
            self.session.delete(document)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to remove document %s for %s: %s", document_id, owner, e)
            raise PersistenceError("Failed to remove document", e)

        self.log.info("Removed document %s for %s (%d mappings, %d progress records)",
                      document_id, owner, mappings_removed, progress_removed)
        return True

    def progress_for_document(self, owner, document_id, mappings, progress_store) -> Optional[dict]:
        """Latest progress of a document across all its fingerprints, percentage on a 0-100 scale."""
        fingerprints = mappings.all_fingerprints_for(owner, document_id)
        record = progress_store.most_recent_among(owner, fingerprints)
        if record is None:
            return None
        return {
            'document': record.document_hash,
            'percentage': float(record.percentage or 0) * 100,
            'device': record.device or 'Unknown',
            'device_id': record.device_id or '',
            'updated_at': record.updated_at,
            'progress': record.progress or '',
        }
