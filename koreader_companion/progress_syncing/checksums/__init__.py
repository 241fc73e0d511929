#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Checksum Module

Fingerprint calculation, the fingerprint -> document mapping table and the
backfill that fills it for documents already in the library.
"""

from .koreader import calculate_koreader_partial_md5, calculate_filename_md5
