#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
KOReader Sync Server Implementation

This module provides a sync server compatible with KOReader's sync plugin,
allowing users to sync their reading progress across devices.

Protocol:
    - Authentication: x-auth-user / x-auth-key headers (key = md5 of the sync password)
    - Endpoints (below the /sync prefix):
        * GET  /users/auth                 - Authenticate user
        * GET  /syncs/progress/<document>  - Get reading progress
        * PUT  /syncs/progress             - Update reading progress
        * GET  /healthcheck                - Liveness check, no authentication
    - Every response uses the application/vnd.koreader.v1+json content type

Integration:
    - Fingerprints are matched to library documents through the hash_mapping table
    - Unknown fingerprints trigger a library scan (ResolutionEngine)
    - Progress is stored even when the document cannot be identified, so a
      device is never told its document does not exist while writing

Based on the reference implementation from koreader-sync-server
Reference: https://github.com/koreader/koreader-sync-server
"""

import calendar
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, request, jsonify
from flask_httpauth import HTTPTokenAuth
from werkzeug.security import check_password_hash

from ... import logger, ub
from ...constants import KOSYNC_CONTENT_TYPE
from ..errors import AuthenticationError, DocumentNotFound, PersistenceError
from ..settings import is_koreader_sync_enabled

log = logger.create()

# Create the blueprint
kosync = Blueprint('kosync', __name__)

# The whole x-auth-key header value is the token; the user comes from x-auth-user
auth = HTTPTokenAuth(scheme='KOSync', header='x-auth-key')

AUTH_USER_HEADER = 'x-auth-user'

# Field names (constants for API contract)
DOCUMENT_FIELD = "document"
PROGRESS_FIELD = "progress"
PERCENTAGE_FIELD = "percentage"
DEVICE_FIELD = "device"
DEVICE_ID_FIELD = "device_id"
TIMESTAMP_FIELD = "timestamp"

# Validation constants
MAX_DOCUMENT_LENGTH = 255  # Maximum document identifier length
MAX_PROGRESS_LENGTH = 255  # Maximum progress string length
MAX_DEVICE_LENGTH = 100    # Maximum device name length
MAX_DEVICE_ID_LENGTH = 100 # Maximum device ID length


class KOSyncError(Exception):
    """Request that violates the KOSync protocol (answered with 400)"""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def is_valid_field(field: Any) -> bool:
    """
    Check if a field is valid (not None, not empty string).

    Args:
        field: Value to validate

    Returns:
        True if field is a non-empty string
    """
    return isinstance(field, str) and len(field) > 0


def is_valid_key_field(field: Any, max_length: int = MAX_DOCUMENT_LENGTH) -> bool:
    """
    Check if a field is valid as a database key.

    Key fields must be non-empty strings without colons (reserved for internal use)
    and within specified length limits.
    """
    return is_valid_field(field) and ":" not in field and len(field) <= max_length


def _optional_text(data: Dict[str, Any], field: str, max_length: int) -> Optional[str]:
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise KOSyncError(f"Invalid {field} field")
    value = str(value)
    if len(value) > max_length:
        raise KOSyncError(f"Invalid {field} field")
    return value


def _optional_percentage(data: Dict[str, Any]) -> Optional[float]:
    value = data.get(PERCENTAGE_FIELD)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise KOSyncError("Invalid percentage value")
    try:
        return float(value)
    except (ValueError, TypeError):
        raise KOSyncError("Invalid percentage value")


def _unix_timestamp(value) -> int:
    # SQLite hands back naive datetimes; they are stored in UTC
    return calendar.timegm(value.utctimetuple())


def create_sync_response(data: Dict[str, Any], status_code: int = 200):
    """
    Create a JSON response with the KOReader sync content type.

    Args:
        data: Response payload dictionary
        status_code: HTTP status code (default: 200)
    """
    response = jsonify(data)
    response.status_code = status_code
    response.headers['Content-Type'] = KOSYNC_CONTENT_TYPE
    return response


def handle_sync_error(error: KOSyncError):
    log.warning(f"KOSync request rejected: {error.message}")
    return create_sync_response({"message": error.message}, error.status_code)


class KOSyncHandler:
    """
    Request logic of the sync protocol.

    Holds no per-request state; the routes below look the instance up on the
    current app and pass the authenticated owner to every call.
    """

    def __init__(self, session, progress_store, resolver, log=None):
        self.session = session
        self.progress_store = progress_store
        self.resolver = resolver
        self.log = log or logger.create()

    def authenticate(self, username: Optional[str], key: Optional[str]):
        """
        User matching the x-auth-user / x-auth-key pair.

        Raises:
            AuthenticationError: missing headers, unknown user, no sync password or wrong key
        """
        if not username or not key:
            raise AuthenticationError("KOSync authentication failed: missing credentials")

        user = ub.get_user(self.session, username)
        if user is None:
            raise AuthenticationError(f"KOSync authentication failed: unknown user {username}")
        if not user.sync_password:
            raise AuthenticationError(f"KOSync authentication failed: no sync password set for {username}")
        if not check_password_hash(user.sync_password, key):
            raise AuthenticationError(f"KOSync authentication failed: wrong key for {username}")
        return user

    def get_progress(self, owner: str, document: str) -> Dict[str, str]:
        """
        Progress stored for a fingerprint.

        When nothing is stored the fingerprint is resolved against the library
        (which records the mapping) and the lookup is repeated. Resolution never
        creates progress, so the second lookup can still miss.

        Raises:
            KOSyncError: invalid document identifier
            DocumentNotFound: no progress for the fingerprint
        """
        if not is_valid_key_field(document):
            raise KOSyncError("Invalid document field")

        record = self.progress_store.get(owner, document)
        if record is None:
            document_id = self.resolver.find_document(owner, document)
            if document_id is None:
                raise DocumentNotFound(document)
            record = self.progress_store.get(owner, document)
            if record is None:
                self.log.debug("Document %s resolved to %s for %s but has no progress", document, document_id, owner)
                raise DocumentNotFound(document)

        return {
            DOCUMENT_FIELD: document,
            PROGRESS_FIELD: record.progress if record.progress is not None else "",
            PERCENTAGE_FIELD: str(record.percentage) if record.percentage is not None else "0.0",
            DEVICE_FIELD: record.device if record.device is not None else "",
            DEVICE_ID_FIELD: record.device_id if record.device_id is not None else "",
        }

    def update_progress(self, owner: str, data: Any) -> Dict[str, Any]:
        """
        Store progress reported by a device.

        The fingerprint is resolved first so that the mapping gets recorded, but
        the progress is saved whether or not a document matches.

        Raises:
            KOSyncError: invalid request body
            PersistenceError: progress could not be saved
        """
        if not isinstance(data, dict):
            raise KOSyncError("Invalid request data")

        document = data.get(DOCUMENT_FIELD)
        if not is_valid_key_field(document):
            raise KOSyncError("Document hash required")

        progress = _optional_text(data, PROGRESS_FIELD, MAX_PROGRESS_LENGTH)
        percentage = _optional_percentage(data)
        device = _optional_text(data, DEVICE_FIELD, MAX_DEVICE_LENGTH) or ""
        device_id = _optional_text(data, DEVICE_ID_FIELD, MAX_DEVICE_ID_LENGTH) or ""

        try:
            document_id = self.resolver.find_document(owner, document)
        except PersistenceError as e:
            # Resolution only records a mapping; the progress itself must still be saved
            self.log.warning("Could not resolve document %s for %s: %s", document, owner, e.message)
            document_id = None

        if document_id is None:
            self.log.info("Storing progress for unidentified document %s (%s)", document, owner)

        record = self.progress_store.upsert(owner, document, progress, percentage, device, device_id)
        self.log.info(f"Saved sync progress: user={owner}, document={document}, "
                      f"percentage={percentage}, device={device}")

        return {
            DOCUMENT_FIELD: document,
            TIMESTAMP_FIELD: _unix_timestamp(record.updated_at),
        }


def init_kosync(app, handler: KOSyncHandler, url_prefix: str = '/sync') -> None:
    app.extensions['kosync_handler'] = handler
    app.register_blueprint(kosync, url_prefix=url_prefix)


def get_handler() -> KOSyncHandler:
    return current_app.extensions['kosync_handler']


@kosync.before_request
def _require_kosync_enabled():
    # runs before authentication; the healthcheck answers either way
    if request.endpoint == "kosync.healthcheck":
        return None
    if not is_koreader_sync_enabled():
        return create_sync_response({"message": "KOReader sync is disabled"}, 503)
    return None


@auth.verify_token
def verify_sync_key(key):
    try:
        return get_handler().authenticate(request.headers.get(AUTH_USER_HEADER), key)
    except AuthenticationError as e:
        log.info(e.message)
        return None


@auth.error_handler
def sync_unauthorized(status=401):
    return create_sync_response({"message": "Unauthorized"}, status)


################################################################################
# API Endpoints
################################################################################

@kosync.route("/users/auth", methods=["GET"])
@auth.login_required
def auth_user():
    """
    Authenticate user endpoint (KOSync protocol).

    KOReader calls this when the user logs in from the sync plugin.

    Returns:
        200: {"authorized": "OK"}
        401: {"message": "Unauthorized"} (handled by the auth error handler)
    """
    return create_sync_response({"authorized": "OK"})


@kosync.route("/syncs/progress/<document>", methods=["GET"])
@auth.login_required
def get_progress(document: str):
    """
    Get reading progress for a document (KOSync protocol).

    Response format:
        {
            "document": "abc123...",
            "progress": "location string",
            "percentage": "0.4567",
            "device": "KOReader",
            "device_id": "device123"
        }
    """
    user = auth.current_user()
    try:
        return create_sync_response(get_handler().get_progress(user.name, document))
    except KOSyncError as e:
        return handle_sync_error(e)
    except DocumentNotFound as e:
        log.debug("No progress found for user %s, document %s", user.name, e.document)
        return create_sync_response({"message": e.message}, 404)
    except PersistenceError as e:
        log.error(f"get_progress: Database error: {e.message}")
        return create_sync_response({"message": "Internal server error"}, 500)


@kosync.route("/syncs/progress", methods=["PUT"])
@auth.login_required
def update_progress():
    """
    Update reading progress for a document (KOSync protocol).

    Request body:
        {
            "document": "abc123...",  # Required: Document fingerprint
            "progress": "location",   # Current reading position
            "percentage": 0.4567,     # Progress as fraction (0-1), stored as sent
            "device": "KOReader",     # Device name
            "device_id": "device123"  # Device identifier
        }

    Returns:
        200: {"document": "abc123...", "timestamp": 1699564800}
        400: Validation error
        401: Unauthorized
        500: Progress could not be saved
    """
    user = auth.current_user()
    try:
        data = request.get_json(silent=True)
        return create_sync_response(get_handler().update_progress(user.name, data))
    except KOSyncError as e:
        return handle_sync_error(e)
    except PersistenceError as e:
        log.error(f"update_progress: Database error: {e.message}")
        return create_sync_response({"message": "Internal server error"}, 500)


@kosync.route("/healthcheck", methods=["GET"])
def healthcheck():
    return create_sync_response({"state": "OK"})


################################################################################
# Error Handlers
################################################################################

@kosync.errorhandler(400)
def handle_bad_request(error):
    """Handle HTTP 400 Bad Request errors"""
    return create_sync_response({"message": "Bad request"}, 400)


@kosync.errorhandler(500)
def handle_internal_error(error):
    """Handle HTTP 500 Internal Server errors"""
    log.error(f"Internal server error: {error}")
    return create_sync_response({"message": "Internal server error"}, 500)
