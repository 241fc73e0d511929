# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import os
import sys
import inspect
import logging
from logging import Formatter, StreamHandler
from logging.handlers import RotatingFileHandler


FORMATTER = Formatter("[%(asctime)s] %(levelname)5s {%(name)s:%(lineno)d} %(message)s")
ACCESS_FORMATTER = Formatter("%(message)s")
DEFAULT_LOG_LEVEL = logging.INFO
LOG_TO_STDERR = '/dev/stderr'
LOG_TO_STDOUT = '/dev/stdout'

logging.addLevelName(logging.WARNING, "WARN")
logging.addLevelName(logging.CRITICAL, "CRIT")


class _Logger(logging.Logger):

    def error_or_exception(self, message, stacklevel=2, *args, **kwargs):
        if is_debug_enabled():
            self.exception(message, stacklevel=stacklevel, *args, **kwargs)
        else:
            self.error(message, stacklevel=stacklevel, *args, **kwargs)


logging.setLoggerClass(_Logger)


def get(name=None):
    return logging.getLogger(name)


def create():
    """Return a logger named after the calling module."""
    parent_frame = inspect.stack(0)[1]
    if hasattr(parent_frame, 'frame'):
        parent_frame = parent_frame.frame
    else:
        parent_frame = parent_frame[0]
    parent_module = inspect.getmodule(parent_frame)
    if parent_module is None:
        return get("koreader_companion")
    return get(parent_module.__name__)


def is_debug_enabled():
    return logging.root.level <= logging.DEBUG


def get_level_name(level):
    return logging.getLevelName(level)


def get_log_level(value):
    """Accept a level name ('debug', 'WARN') or number and return the numeric level."""
    if value is None or value == '':
        return DEFAULT_LOG_LEVEL
    if isinstance(value, int):
        return value
    value = str(value).strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL


def is_valid_logfile(file_path):
    if file_path == LOG_TO_STDERR or file_path == LOG_TO_STDOUT:
        return True
    if not file_path:
        return True
    if os.path.isdir(file_path):
        return False
    log_dir = os.path.dirname(file_path)
    return (not log_dir) or os.path.isdir(log_dir)


def setup(log_file, log_level=None):
    """
    Configure the root logger.

    An empty log_file (or '/dev/stderr') logs to stderr, '/dev/stdout' to stdout,
    anything else to a rotating file next to the database.
    """
    log_level = get_log_level(log_level)

    r = logging.root
    r.setLevel(log_level)

    if not log_file or log_file == LOG_TO_STDERR:
        file_handler = StreamHandler(sys.stderr)
        file_handler.baseFilename = LOG_TO_STDERR
    elif log_file == LOG_TO_STDOUT:
        file_handler = StreamHandler(sys.stdout)
        file_handler.baseFilename = LOG_TO_STDOUT
    else:
        previous_handler = r.handlers[0] if r.handlers else None
        if previous_handler and getattr(previous_handler, 'baseFilename', None) == os.path.abspath(log_file):
            return previous_handler.baseFilename
        try:
            file_handler = RotatingFileHandler(log_file, maxBytes=100000, backupCount=2, encoding='utf-8')
        except (IOError, PermissionError):
            file_handler = StreamHandler(sys.stderr)
            file_handler.baseFilename = LOG_TO_STDERR
    file_handler.setFormatter(FORMATTER)

    for h in r.handlers:
        r.removeHandler(h)
        h.close()
    r.addHandler(file_handler)
    logging.captureWarnings(True)
    return file_handler.baseFilename


def create_access_log(log_file, log_name):
    """One logger per access log, used by the gevent request handler."""
    access_log = logging.getLogger(log_name)
    access_log.propagate = False
    access_log.setLevel(logging.INFO)
    if not log_file:
        handler = StreamHandler(sys.stderr)
    else:
        try:
            handler = RotatingFileHandler(log_file, maxBytes=50000, backupCount=2, encoding='utf-8')
        except (IOError, PermissionError):
            handler = StreamHandler(sys.stderr)
    handler.setFormatter(ACCESS_FORMATTER)
    access_log.handlers = [handler]
    return access_log
