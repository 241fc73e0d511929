#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Fingerprint Resolution

Matches a fingerprint the server has never seen against the owner's library by
fingerprinting every document until one matches. The scan is linear in the
size of the library, so it only runs when the hash mapping table has no entry
for the fingerprint; a successful match is written to that table and later
requests are answered from it.
"""

from typing import Optional

from .. import logger
from ..constants import HASH_TYPE_CONTENT, HASH_TYPE_NAME
from .checksums.koreader import compute_content_fingerprint, compute_name_fingerprint
from .errors import FingerprintError, PersistenceError


class ResolutionEngine:

    def __init__(self, library, mappings, log=None):
        self.library = library
        self.mappings = mappings
        self.log = log or logger.create()

    def find_document(self, owner: str, fingerprint: str) -> Optional[int]:
        """Mapped document for a fingerprint, scanning the library on a cache miss."""
        document_id = self.mappings.lookup_document(owner, fingerprint)
        if document_id is not None:
            return document_id
        return self.resolve(owner, fingerprint)

    def resolve(self, owner: str, unknown_fingerprint: str) -> Optional[int]:
        """
        Scan the owner's library for a document whose content or name fingerprint matches.

        The first matching document wins. Its document record is created if it
        does not exist yet and the mapping is stored. Failing to store the
        mapping is logged and does not change the result.

        Returns:
            The document id, or None when no document matches
        """
        self.log.debug("Attempting to resolve unknown fingerprint %s for %s", unknown_fingerprint, owner)

        try:
            candidates = self.library.list_documents(owner)
        except (ValueError, OSError) as e:
            self.log.warning("Cannot list library of %s, fingerprint %s stays unresolved: %s",
                             owner, unknown_fingerprint, e)
            return None

        for candidate in candidates:
            try:
                kind = self._match(candidate, unknown_fingerprint)
            except Exception as e:
                self.log.error_or_exception("Error fingerprinting %s during resolution: %s" % (candidate.file_key, e))
                continue
            if kind is None:
                continue

            self.log.info("Resolved %s fingerprint %s for %s to %s",
                          kind, unknown_fingerprint, owner, candidate.file_key)
            try:
                document_id = self.library.ensure_document_record(owner, candidate)
            except PersistenceError as e:
                self.log.error("Could not register %s for %s: %s", candidate.file_key, owner, e.message)
                continue

            try:
                self.mappings.upsert(owner, unknown_fingerprint, kind, document_id)
            except PersistenceError as e:
                self.log.warning("Resolved fingerprint %s to document %s but could not store the mapping: %s",
                                 unknown_fingerprint, document_id, e.message)
            return document_id

        self.log.warning("Unknown document fingerprint %s for %s (%d documents checked)",
                         unknown_fingerprint, owner, len(candidates))
        return None

    def _match(self, candidate, fingerprint) -> Optional[str]:
        content_hash = None
        try:
            with candidate.open() as stream:
                content_hash = compute_content_fingerprint(stream, candidate.size)
        except FingerprintError as e:
            self.log.debug("No content fingerprint for %s: %s", candidate.file_key, e.message)
        except (IOError, OSError) as e:
            self.log.debug("Error reading %s during resolution: %s", candidate.file_key, e)

        try:
            name_hash = compute_name_fingerprint(candidate.name)
        except FingerprintError as e:
            self.log.debug("No name fingerprint for %s: %s", candidate.file_key, e.message)
            name_hash = None

        if content_hash == fingerprint:
            return HASH_TYPE_CONTENT
        if name_hash == fingerprint:
            return HASH_TYPE_NAME
        return None
