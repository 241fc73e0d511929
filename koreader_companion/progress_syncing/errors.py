# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Exceptions raised by the progress syncing core."""


class SyncError(Exception):
    """Base class for progress syncing errors"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationError(SyncError):
    """Missing or invalid x-auth-user / x-auth-key credentials"""
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class DocumentNotFound(SyncError):
    """Fingerprint could not be resolved and no progress exists for it"""
    def __init__(self, document: str, message: str = "Document not found"):
        self.document = document
        super().__init__(message)


class FingerprintError(SyncError):
    """A fingerprint could not be computed (empty or unreadable source, empty name)"""


class PersistenceError(SyncError):
    """The storage layer failed; wraps the original database exception"""
    def __init__(self, message: str, original: Exception = None):
        self.original = original
        super().__init__(message)


class BatchProcessingError(SyncError):
    """Unexpected error inside a backfill batch; the batch was rolled back"""
    def __init__(self, message: str, processed: int = 0, succeeded: int = 0, failed: int = 0):
        self.processed = processed
        self.succeeded = succeeded
        self.failed = failed
        super().__init__(message)
