# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Unit Tests for Document Fingerprints

Fingerprints must be byte-for-byte what KOReader computes, otherwise a device
and the server never agree on a document.
"""

import hashlib
import io

import pytest

from koreader_companion.progress_syncing.checksums.koreader import (
    SAMPLE_OFFSETS,
    compute_content_fingerprint,
    compute_name_fingerprint,
    calculate_koreader_partial_md5,
    calculate_filename_md5,
    generate_document_hashes,
    is_valid_hash,
)
from koreader_companion.progress_syncing.errors import FingerprintError


def _pattern(size):
    return bytes(i % 251 for i in range(size))


class _FailingStream(io.BytesIO):
    """Stream whose seek fails from a given offset on."""

    def __init__(self, data, fail_from):
        super().__init__(data)
        self.fail_from = fail_from

    def seek(self, offset, whence=0):
        if offset >= self.fail_from:
            raise OSError("simulated read error")
        return super().seek(offset, whence)


@pytest.mark.unit
class TestComputeContentFingerprint:
    """Test compute_content_fingerprint sampling."""

    def test_offsets_match_koreader(self):
        assert SAMPLE_OFFSETS[0] == 0
        assert SAMPLE_OFFSETS[1:] == tuple(1024 << (2 * i) for i in range(11))

    def test_small_file_is_single_truncated_sample(self):
        data = _pattern(500)
        assert compute_content_fingerprint(io.BytesIO(data), len(data)) == hashlib.md5(data).hexdigest()

    def test_2000_byte_file_uses_two_samples(self):
        data = _pattern(2000)
        expected = hashlib.md5(data[0:1024] + data[1024:2000]).hexdigest()
        assert compute_content_fingerprint(io.BytesIO(data), len(data)) == expected

    def test_gaps_between_offsets_are_skipped(self):
        data = _pattern(5000)
        expected = hashlib.md5(data[0:1024] + data[1024:2048] + data[4096:5000]).hexdigest()
        assert compute_content_fingerprint(io.BytesIO(data), len(data)) == expected

    def test_bytes_outside_samples_do_not_matter(self):
        data = bytearray(_pattern(5000))
        original = compute_content_fingerprint(io.BytesIO(bytes(data)), len(data))
        data[3000] ^= 0xFF
        assert compute_content_fingerprint(io.BytesIO(bytes(data)), len(data)) == original

    def test_deterministic(self):
        data = _pattern(70000)
        first = compute_content_fingerprint(io.BytesIO(data), len(data))
        second = compute_content_fingerprint(io.BytesIO(data), len(data))
        assert first == second
        assert is_valid_hash(first)

    def test_empty_source_raises(self):
        with pytest.raises(FingerprintError):
            compute_content_fingerprint(io.BytesIO(b""), 0)

    def test_stops_at_read_failure(self):
        data = _pattern(5000)
        stream = _FailingStream(data, fail_from=4096)
        expected = hashlib.md5(data[0:2048]).hexdigest()
        assert compute_content_fingerprint(stream, len(data)) == expected

    def test_failure_on_first_sample_raises(self):
        with pytest.raises(FingerprintError):
            compute_content_fingerprint(_FailingStream(_pattern(100), fail_from=0), 100)

    def test_stops_when_stream_is_shorter_than_declared(self):
        data = _pattern(1500)
        expected = hashlib.md5(data).hexdigest()
        # declared size says a sample at 4096 exists, the stream ends earlier
        assert compute_content_fingerprint(io.BytesIO(data), 10000) == expected


@pytest.mark.unit
class TestComputeNameFingerprint:
    """Test compute_name_fingerprint."""

    def test_md5_of_name(self):
        assert compute_name_fingerprint("Book.epub") == hashlib.md5(b"Book.epub").hexdigest()

    def test_case_sensitive(self):
        assert compute_name_fingerprint("Book.epub") != compute_name_fingerprint("book.epub")

    def test_utf8_encoded(self):
        assert compute_name_fingerprint("Café.epub") == hashlib.md5("Café.epub".encode('utf-8')).hexdigest()

    def test_empty_name_raises(self):
        with pytest.raises(FingerprintError):
            compute_name_fingerprint("")


@pytest.mark.unit
class TestPathHelpers:
    """Test the path-based helpers."""

    def test_partial_md5_of_file(self, tmp_path):
        data = _pattern(5000)
        file = tmp_path / "book.epub"
        file.write_bytes(data)
        assert calculate_koreader_partial_md5(str(file)) == compute_content_fingerprint(io.BytesIO(data), 5000)

    def test_partial_md5_empty_file_returns_none(self, tmp_path):
        file = tmp_path / "empty.epub"
        file.write_bytes(b"")
        assert calculate_koreader_partial_md5(str(file)) is None

    def test_partial_md5_missing_file_returns_none(self, tmp_path):
        assert calculate_koreader_partial_md5(str(tmp_path / "missing.epub")) is None

    def test_partial_md5_none_returns_none(self):
        assert calculate_koreader_partial_md5(None) is None

    def test_filename_md5_uses_basename(self, tmp_path):
        path = str(tmp_path / "Author" / "Book.epub")
        assert calculate_filename_md5(path) == hashlib.md5(b"Book.epub").hexdigest()

    def test_filename_md5_empty_returns_none(self):
        assert calculate_filename_md5("") is None

    def test_generate_document_hashes(self, tmp_path):
        file = tmp_path / "Book.epub"
        file.write_bytes(b"content")
        hashes = generate_document_hashes(str(file))
        assert hashes['content_hash'] == hashlib.md5(b"content").hexdigest()
        assert hashes['name_hash'] == hashlib.md5(b"Book.epub").hexdigest()
        assert hashes['filename'] == "Book.epub"
        assert hashes['file_path'] == str(file)


@pytest.mark.unit
class TestIsValidHash:
    """Test is_valid_hash."""

    def test_accepts_md5(self):
        assert is_valid_hash(hashlib.md5(b"x").hexdigest()) is True

    def test_rejects_uppercase(self):
        assert is_valid_hash("A" * 32) is False

    def test_rejects_wrong_length(self):
        assert is_valid_hash("a" * 31) is False

    def test_rejects_none(self):
        assert is_valid_hash(None) is False
