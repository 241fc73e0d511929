#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Document Fingerprints Compatible with KOReader Sync

KOReader identifies a document either by a partial MD5 of its content
("binary" matching in the KOReader sync settings) or by the MD5 of its file
name ("filename" matching). Both are reproduced here so that the server
computes exactly the digest a device will present.

Content fingerprint: 1024 bytes are sampled at each of the offsets
0, 1K, 4K, 16K, 64K, 256K, 1M, 4M, 16M, 64M, 256M and 1G, stopping at the
first offset past the end of the file. The samples are concatenated in offset
order and hashed with MD5.

Reference: https://github.com/koreader/koreader/blob/master/frontend/util.lua (partialMD5)
"""

import hashlib
import os
import re
from typing import BinaryIO, Optional

from ... import logger
from ..errors import FingerprintError

log = logger.create()

SAMPLE_SIZE = 1024

# lshift(1024, 2*i) for i = -1..10; LuaJIT wraps the negative shift to 0
SAMPLE_OFFSETS = (
    0, 1024, 4096, 16384, 65536, 262144, 1048576,
    4194304, 16777216, 67108864, 268435456, 1073741824,
)

_HASH_RE = re.compile(r'^[a-f0-9]{32}$')


def compute_content_fingerprint(byte_source: BinaryIO, total_size: int) -> str:
    """
    Compute the KOReader partial MD5 of a seekable binary stream.

    Sampling stops at the first offset that is >= total_size, or as soon as a
    seek/read fails or returns no data. Files smaller than 1 KiB therefore
    contribute a single (short) sample.

    Args:
        byte_source: Seekable stream opened in binary mode
        total_size: Size of the stream in bytes

    Returns:
        32-character lowercase hexadecimal MD5 digest

    Raises:
        FingerprintError: if not a single sample could be read
    """
    md5_hash = hashlib.md5()  # nosec - MD5 is used for identification, not security
    samples_read = 0

    for offset in SAMPLE_OFFSETS:
        if offset >= total_size:
            break
        try:
            byte_source.seek(offset)
            sample = byte_source.read(SAMPLE_SIZE)
        except (IOError, OSError, ValueError) as e:
            log.debug("Content fingerprint: read at offset %d failed after %d samples: %s",
                      offset, samples_read, e)
            break
        if not sample:
            break
        md5_hash.update(sample)
        samples_read += 1

    if samples_read == 0:
        raise FingerprintError("No samples could be read (size {})".format(total_size))

    return md5_hash.hexdigest()


def compute_name_fingerprint(name: str) -> str:
    """
    MD5 of a bare file name, the way KOReader computes it for filename matching.

    The name is hashed as given: case-sensitive, UTF-8 encoded, no directory part.

    Raises:
        FingerprintError: if the name is empty
    """
    if not name:
        raise FingerprintError("Empty file name")
    return hashlib.md5(name.encode('utf-8')).hexdigest()  # nosec


def calculate_koreader_partial_md5(filepath: str) -> Optional[str]:
    """
    Content fingerprint of a file on disk.

    Returns:
        32-character hexadecimal MD5 hash string, or None if the file cannot be read

    Example:
        >>> calculate_koreader_partial_md5("/path/to/book.epub")
        'b3fb8f4f8448160365087d6ca05c7fa2'
    """
    if not filepath or not os.path.isfile(filepath):
        return None

    try:
        total_size = os.path.getsize(filepath)
        with open(filepath, 'rb') as f:
            return compute_content_fingerprint(f, total_size)
    except FingerprintError as e:
        log.debug("calculate_koreader_partial_md5: no fingerprint for %s: %s", filepath, e.message)
        return None
    except (IOError, OSError) as e:
        log.error("calculate_koreader_partial_md5: Error reading file %s: %s", filepath, e)
        return None


def calculate_filename_md5(filepath: str) -> Optional[str]:
    """Name fingerprint of a file path (only the basename is hashed)."""
    if not filepath:
        return None
    try:
        return compute_name_fingerprint(os.path.basename(filepath))
    except FingerprintError as e:
        log.debug("calculate_filename_md5: no fingerprint for %r: %s", filepath, e.message)
        return None


def generate_document_hashes(filepath: str) -> dict:
    """Both fingerprints of a file; a value is None when it could not be computed."""
    result = {
        'content_hash': calculate_koreader_partial_md5(filepath),
        'name_hash': calculate_filename_md5(filepath),
        'file_path': filepath,
        'filename': os.path.basename(filepath) if filepath else '',
    }
    log.debug("Document hashes for %s: content=%s name=%s",
              result['filename'], result['content_hash'], result['name_hash'])
    return result


def is_valid_hash(value: Optional[str]) -> bool:
    """True for a 32-character lowercase hexadecimal MD5 digest."""
    if value is None:
        return False
    return _HASH_RE.match(value) is not None
