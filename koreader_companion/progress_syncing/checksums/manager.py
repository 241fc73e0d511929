#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Hash Mapping Management

Stores which library document a fingerprint belongs to, per owner. A lookup is
by fingerprint value only; the fingerprint kind is recorded for diagnostics.

Mappings are never superseded automatically. When a file is edited or renamed
its new fingerprints are added next to the old ones, so a device still holding
the previous copy keeps syncing against the same document.
"""

from datetime import datetime, timezone
from typing import Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from ... import logger
from ...constants import HASH_TYPES
from ..errors import PersistenceError
from ..models import HashMapping


class HashMappingStore:
    """(owner, fingerprint) -> document id, backed by the hash_mapping table."""

    def __init__(self, session, log=None):
        self.session = session
        self.log = log or logger.create()

    def upsert(self, owner: str, fingerprint: str, kind: str, document_id: int, commit: bool = True) -> None:
        """
        Replace whatever mapping exists for (owner, fingerprint) with one pointing at document_id.

        Calling it repeatedly with the same arguments leaves exactly one row.
        With commit=False the change stays in the caller's transaction.

        Raises:
            PersistenceError: if the database rejects the write
        """
        if kind not in HASH_TYPES:
            raise ValueError("Unknown fingerprint kind: {}".format(kind))

        try:
            self.session.query(HashMapping).filter(
                HashMapping.owner == owner,
                HashMapping.document_hash == fingerprint
            ).delete(synchronize_session=False)

            self.session.add(HashMapping(
                owner=owner,
                document_hash=fingerprint,
                hash_type=kind,
                metadata_id=document_id,
                created_at=datetime.now(timezone.utc)
            ))

            if commit:
                self.session.commit()
            else:
                self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to store %s mapping %s -> document %s for %s: %s",
                           kind, fingerprint, document_id, owner, e)
            raise PersistenceError("Failed to store hash mapping", e)

        self.log.debug("Mapped %s fingerprint %s to document %s for %s", kind, fingerprint, document_id, owner)

    def lookup_document(self, owner: str, fingerprint: str) -> Optional[int]:
        """Document id mapped to the fingerprint, or None."""
        try:
            row = self.session.query(HashMapping.metadata_id, HashMapping.hash_type).filter(
                HashMapping.owner == owner,
                HashMapping.document_hash == fingerprint
            ).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Database error looking up fingerprint %s for %s: %s", fingerprint, owner, e)
            raise PersistenceError("Failed to look up hash mapping", e)

        if row is None:
            self.log.debug("Fingerprint %s not in hash mapping table for %s", fingerprint, owner)
            return None

        self.log.debug("Found document %s by %s fingerprint %s for %s", row.metadata_id, row.hash_type,
                       fingerprint, owner)
        return row.metadata_id

    def all_fingerprints_for(self, owner: str, document_id: int) -> Set[str]:
        """Every fingerprint, current or stale, that points at the document."""
        try:
            rows = self.session.query(HashMapping.document_hash).filter(
                HashMapping.owner == owner,
                HashMapping.metadata_id == document_id
            ).all()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to get fingerprints of document %s for %s: %s", document_id, owner, e)
            raise PersistenceError("Failed to read hash mappings", e)
        return {row.document_hash for row in rows}

    def delete_all_for(self, owner: str, document_id: int, commit: bool = True) -> int:
        """Remove every mapping of a document. Returns the number of rows removed."""
        try:
            removed = self.session.query(HashMapping).filter(
                HashMapping.owner == owner,
                HashMapping.metadata_id == document_id
            ).delete(synchronize_session=False)
            if commit:
                self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to remove hash mappings of document %s for %s: %s", document_id, owner, e)
            raise PersistenceError("Failed to remove hash mappings", e)

        if removed:
            self.log.info("Removed %d hash mappings of document %s for %s", removed, document_id, owner)
        return removed
