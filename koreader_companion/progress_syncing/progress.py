#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Reading progress storage, keyed by (owner, fingerprint)."""

from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .. import logger
from .errors import PersistenceError
from .models import SyncProgress


class SyncProgressStore:

    def __init__(self, session, log=None):
        self.session = session
        self.log = log or logger.create()

    def upsert(self, owner: str, fingerprint: str, progress, percentage, device, device_id,
               commit: bool = True) -> SyncProgress:
        """
        Insert or update the progress row of (owner, fingerprint).

        The last write wins; updated_at is always set to the current time.
        percentage is stored exactly as the client sent it.

        Raises:
            PersistenceError: if the row could not be written
        """
        timestamp = datetime.now(timezone.utc)
        try:
            record = self.session.query(SyncProgress).filter(
                SyncProgress.owner == owner,
                SyncProgress.document_hash == fingerprint
            ).first()

            if record:
                record.progress = progress
                record.percentage = percentage
                record.device = device
                record.device_id = device_id
                record.updated_at = timestamp
                self.log.debug("Updated sync progress for %s, document %s", owner, fingerprint)
            else:
                record = SyncProgress(
                    owner=owner,
                    document_hash=fingerprint,
                    progress=progress,
                    percentage=percentage,
                    device=device,
                    device_id=device_id,
                    updated_at=timestamp
                )
                self.session.add(record)
                self.log.debug("Created sync progress for %s, document %s", owner, fingerprint)

            if commit:
                self.session.commit()
            else:
                self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to save sync progress for %s, document %s: %s", owner, fingerprint, e)
            raise PersistenceError("Failed to save sync progress", e)

        return record

    def get(self, owner: str, fingerprint: str) -> Optional[SyncProgress]:
        try:
            return self.session.query(SyncProgress).filter(
                SyncProgress.owner == owner,
                SyncProgress.document_hash == fingerprint
            ).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to read sync progress for %s, document %s: %s", owner, fingerprint, e)
            raise PersistenceError("Failed to read sync progress", e)

    def most_recent_among(self, owner: str, fingerprints: Iterable[str]) -> Optional[SyncProgress]:
        """
        The most recently updated row among several fingerprints of one document.

        A document that was edited or renamed has progress stored under more than
        one fingerprint; whichever device synced last holds the current position.
        """
        fingerprints = list(fingerprints)
        if not fingerprints:
            return None
        try:
            return self.session.query(SyncProgress).filter(
                SyncProgress.owner == owner,
                SyncProgress.document_hash.in_(fingerprints)
            ).order_by(SyncProgress.updated_at.desc()).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to read sync progress for %d fingerprints of %s: %s", len(fingerprints), owner, e)
            raise PersistenceError("Failed to read sync progress", e)

    def delete_for(self, owner: str, fingerprints: Iterable[str], commit: bool = True) -> int:
        """Remove the progress rows of the given fingerprints. Returns the number removed."""
        fingerprints = list(fingerprints)
        if not fingerprints:
            return 0
        try:
            removed = self.session.query(SyncProgress).filter(
                SyncProgress.owner == owner,
                SyncProgress.document_hash.in_(fingerprints)
            ).delete(synchronize_session=False)
            if commit:
                self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.log.error("Failed to remove sync progress for %s: %s", owner, e)
            raise PersistenceError("Failed to remove sync progress", e)

        if removed:
            self.log.info("Removed %d sync progress records for %s", removed, owner)
        return removed
