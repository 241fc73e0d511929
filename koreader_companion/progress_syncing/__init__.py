#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Progress Syncing

Reading progress synchronization for KOReader devices:

- Fingerprint generation (KOReader partial MD5 and filename MD5)
- Fingerprint -> document mappings and their backfill
- Progress storage and resolution of unknown fingerprints
- The KOSync protocol endpoints

Architecture:
    models.py           - Database models (HashMapping, SyncProgress)
    errors.py           - Exceptions shared by all components
    progress.py         - SyncProgressStore
    resolution.py       - ResolutionEngine (library scan on unknown fingerprints)
    checksums/          - Fingerprint calculation and storage
        koreader.py     - KOReader partialMD5 algorithm implementation
        manager.py      - HashMappingStore
        backfill.py     - Batch hash generation for existing documents
    protocols/          - Sync protocol implementations
        kosync.py       - KOSync protocol for KOReader devices
"""

# NOTE: kosync blueprint is NOT imported here, it needs Flask only when serving
from .checksums.koreader import compute_content_fingerprint, compute_name_fingerprint
from .checksums.manager import HashMappingStore
from .errors import (
    SyncError,
    AuthenticationError,
    DocumentNotFound,
    FingerprintError,
    PersistenceError,
    BatchProcessingError
)
from .models import HashMapping, SyncProgress, ensure_sync_tables
from .progress import SyncProgressStore
from .resolution import ResolutionEngine

__all__ = [
    # Fingerprints
    'compute_content_fingerprint',
    'compute_name_fingerprint',
    # Stores and resolution
    'HashMappingStore',
    'SyncProgressStore',
    'ResolutionEngine',
    # Errors
    'SyncError',
    'AuthenticationError',
    'DocumentNotFound',
    'FingerprintError',
    'PersistenceError',
    'BatchProcessingError',
    # Database models and migrations
    'HashMapping',
    'SyncProgress',
    'ensure_sync_tables',
]
