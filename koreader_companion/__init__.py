# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from . import logger, ub
from .config import ServerConfig
from .constants import STABLE_VERSION

__version__ = STABLE_VERSION

log = logger.create()


def create_app(config=None):
    """
    Build the sync server application.

    Sets up logging and the settings database, then wires the library, the
    stores and the resolution engine into the KOSync blueprint.
    """
    from .library import FilesystemLibrary
    from .progress_syncing import HashMappingStore, SyncProgressStore, ResolutionEngine
    from .progress_syncing.protocols.kosync import KOSyncHandler, init_kosync

    config = config or ServerConfig.from_env()
    logger.setup(config.log_file, config.log_level)

    app = Flask(__name__)
    app.config.update(KOSYNC_CONFIG=config)

    # Fix for running behind reverse proxy (e.g. nginx, apache, caddy, ...)
    # Set TRUSTED_PROXY_COUNT to the number of proxies in your chain (default: 1)
    num_proxies = config.trusted_proxy_count
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=num_proxies, x_proto=num_proxies, x_host=num_proxies,
                            x_prefix=num_proxies)
    log.info(f'ProxyFix configured to trust {num_proxies} proxy(ies) for X-Forwarded-* headers')

    session = ub.init_db(config.settings_path)

    library = FilesystemLibrary(config.library_path, session)
    mappings = HashMappingStore(session)
    progress_store = SyncProgressStore(session)
    resolver = ResolutionEngine(library, mappings)
    init_kosync(app, KOSyncHandler(session, progress_store, resolver), config.url_prefix)

    @app.teardown_appcontext
    def shutdown_session(exception=None):
        if ub.session:
            ub.session.remove()

    log.info('Starting KOReader Companion %s (library: %s, sync %s)', __version__, config.library_path,
             'enabled' if config.sync_enabled else 'disabled')
    return app
