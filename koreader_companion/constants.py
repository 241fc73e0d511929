# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import os


BASE_DIR = os.path.abspath(os.path.dirname(__file__))

STABLE_VERSION = '0.3.0'

# Content type of every KOReader sync response
KOSYNC_CONTENT_TYPE = 'application/vnd.koreader.v1+json; charset=utf-8'
KOSYNC_URL_PREFIX = '/sync'

# Fingerprint kinds stored in hash_mapping.hash_type
HASH_TYPE_CONTENT = 'content'
HASH_TYPE_NAME = 'name'
HASH_TYPES = (HASH_TYPE_CONTENT, HASH_TYPE_NAME)

# Files the filesystem library treats as documents
EBOOK_EXTENSIONS = frozenset(['epub', 'pdf', 'cbr', 'cbz', 'mobi', 'azw3', 'fb2', 'djvu'])

DEFAULT_SETTINGS_PATH = os.path.join(os.getcwd(), 'app.db')
DEFAULT_LIBRARY_PATH = os.path.join(os.getcwd(), 'library')
DEFAULT_HOST = '0.0.0.0'  # nosec
DEFAULT_PORT = 8083
DEFAULT_BATCH_SIZE = 50