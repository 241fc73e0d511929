# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Server configuration.

Values come from environment variables and can be overridden by command line
options. The resulting object is stored on the Flask app as
``app.config['KOSYNC_CONFIG']``.
"""

import os

from . import constants


class ServerConfig:
    def __init__(self,
                 settings_path=constants.DEFAULT_SETTINGS_PATH,
                 library_path=constants.DEFAULT_LIBRARY_PATH,
                 sync_enabled=True,
                 url_prefix=constants.KOSYNC_URL_PREFIX,
                 log_file='',
                 log_level='INFO',
                 access_log='',
                 host=constants.DEFAULT_HOST,
                 port=constants.DEFAULT_PORT,
                 trusted_proxy_count=1):
        self.settings_path = settings_path
        self.library_path = library_path
        self.sync_enabled = sync_enabled
        self.url_prefix = url_prefix
        self.log_file = log_file
        self.log_level = log_level
        self.access_log = access_log
        self.host = host
        self.port = port
        self.trusted_proxy_count = trusted_proxy_count

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        return cls(
            settings_path=env.get('KOSYNC_SETTINGS_PATH', constants.DEFAULT_SETTINGS_PATH),
            library_path=env.get('KOSYNC_LIBRARY_PATH', constants.DEFAULT_LIBRARY_PATH),
            sync_enabled=env.get('KOSYNC_ENABLED', 'true').strip().lower() in ('1', 'true', 'yes', 'on'),
            url_prefix=env.get('KOSYNC_URL_PREFIX', constants.KOSYNC_URL_PREFIX),
            log_file=env.get('KOSYNC_LOG_FILE', ''),
            log_level=env.get('KOSYNC_LOG_LEVEL', 'INFO'),
            access_log=env.get('KOSYNC_ACCESS_LOG', ''),
            host=env.get('KOSYNC_HOST', constants.DEFAULT_HOST),
            port=int(env.get('KOSYNC_PORT', constants.DEFAULT_PORT)),
            trusted_proxy_count=int(env.get('TRUSTED_PROXY_COUNT', '1')),
        )

    def update(self, **overrides):
        """Apply command line overrides, ignoring options that were not given."""
        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(self, key):
                raise AttributeError("Unknown configuration option: {}".format(key))
            setattr(self, key, value)
        return self

    def __repr__(self):
        return '<ServerConfig settings={!r} library={!r} enabled={}>'.format(
            self.settings_path, self.library_path, self.sync_enabled)
