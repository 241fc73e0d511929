# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Helpers for KOReader sync feature flags."""

from flask import current_app


def is_koreader_sync_enabled() -> bool:
    """Return True if KOReader sync is enabled in the server configuration."""
    config = current_app.config.get('KOSYNC_CONFIG')
    if config is None:
        # Fail closed when the app was not configured through create_app
        return False
    return bool(config.sync_enabled)
