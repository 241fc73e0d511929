#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Database Models and Setup for Progress Syncing

Handles the hash_mapping and sync_progress table schemas and initialization.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, UniqueConstraint, Index, inspect

from .. import logger
from ..ub import Base

log = logger.create()


class HashMapping(Base):
    """
    Maps a fingerprint presented by a KOReader device to a library document.

    A document owns several rows over its lifetime: its current content
    fingerprint, its current name fingerprint and any fingerprints left behind
    by earlier edits or renames. Old rows are kept so devices holding an older
    copy of the file keep syncing; they disappear only when the document is
    deleted.

    Uniqueness is on (owner, document_hash) regardless of hash_type, so a
    content fingerprint equal to a name fingerprint of the same owner is
    overwritten by whichever is written last.
    """
    __tablename__ = 'hash_mapping'
    __table_args__ = (
        UniqueConstraint('owner', 'document_hash', name='hash_mapping_unique'),
        Index('idx_hash_mapping_document', 'owner', 'metadata_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(64), nullable=False)
    document_hash = Column(String(32), nullable=False)  # MD5 hex digest is always 32 chars
    hash_type = Column(String(16), nullable=False)  # 'content' or 'name'
    metadata_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return (f"<HashMapping(owner={self.owner}, document_hash={self.document_hash}, "
                f"hash_type={self.hash_type}, metadata_id={self.metadata_id})>")


class SyncProgress(Base):
    """
    Reading position reported by a device, keyed by (owner, document_hash).

    There is no foreign key to a document: progress for a
    fingerprint the server cannot identify is stored all the same.
    percentage is the fraction sent by the client (0.0 - 1.0), unconverted.
    """
    __tablename__ = 'sync_progress'
    __table_args__ = (
        UniqueConstraint('owner', 'document_hash', name='sync_progress_unique'),
        Index('idx_sync_progress_owner', 'owner'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(64), nullable=False)
    document_hash = Column(String(255), nullable=False)
    progress = Column(Text)
    percentage = Column(Float)
    device = Column(String(100))
    device_id = Column(String(100))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return (f"<SyncProgress(owner={self.owner}, document_hash={self.document_hash}, "
                f"percentage={self.percentage}, device={self.device})>")


EXPECTED_COLUMNS = {
    'hash_mapping': {'id', 'owner', 'document_hash', 'hash_type', 'metadata_id', 'created_at'},
    'sync_progress': {'id', 'owner', 'document_hash', 'progress', 'percentage',
                      'device', 'device_id', 'updated_at'},
}


def ensure_sync_tables(engine) -> bool:
    """
    Ensure the hash_mapping and sync_progress tables exist with the expected schema.

    Missing tables are created. If a table exists with different columns a
    warning is logged and the table is left as-is so it can be migrated.

    Returns:
        True if both tables match the expected schema
    """
    inspector = inspect(engine)
    existing = set(inspector.get_table_names())
    schema_ok = True

    for table_name, expected_columns in EXPECTED_COLUMNS.items():
        if table_name not in existing:
            Base.metadata.tables[table_name].create(bind=engine, checkfirst=True)
            log.info("Created %s table with indexes", table_name)
            continue

        actual_columns = {column['name'] for column in inspector.get_columns(table_name)}
        if actual_columns != expected_columns:
            missing = expected_columns - actual_columns
            extra = actual_columns - expected_columns
            log.warning(
                f"{table_name} table schema mismatch. "
                f"Missing: {missing}. Extra: {extra}. "
                f"Migration required."
            )
            schema_ok = False

    return schema_ok
