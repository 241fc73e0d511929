# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import signal
from datetime import datetime

from gevent.pywsgi import WSGIHandler, WSGIServer

from . import logger

log = logger.create()


class MyWSGIHandler(WSGIHandler):
    def get_environ(self):
        env = super().get_environ()
        path, __ = self.path.split('?', 1) if '?' in self.path else (self.path, '')
        env['RAW_URI'] = path
        return env

    def format_request(self):
        now = datetime.now().replace(microsecond=0)
        length = self.response_length or '-'
        if self.time_finish:
            delta = '%.6f' % (self.time_finish - self.time_start)
        else:
            delta = '-'
        forwarded = self.environ.get('HTTP_X_FORWARDED_FOR', None)
        if forwarded:
            client_address = forwarded
        else:
            client_address = self.client_address[0] if isinstance(self.client_address, tuple) else self.client_address
        # x-auth-key never shows up here, only the request line is logged
        return '%s - - [%s] "%s" %s %s %s' % (
            client_address or '-',
            now,
            self.requestline or '',
            (self._orig_status or self.status or '000').split()[0],
            length,
            delta)


class WebServer:
    def __init__(self):
        signal.signal(signal.SIGINT, self._killServer)
        signal.signal(signal.SIGTERM, self._killServer)

        self.wsgiserver = None
        self.access_logger = None
        self.app = None
        self.listen_address = None
        self.listen_port = None

    def init_app(self, application, config):
        self.app = application
        self.listen_address = config.host
        self.listen_port = config.port
        if config.access_log:
            self.access_logger = logger.create_access_log(config.access_log, "kosync.access")

    def _start_gevent(self):
        log.info('Starting Gevent server on %s:%s', self.listen_address or '*', self.listen_port)
        self.wsgiserver = WSGIServer((self.listen_address, self.listen_port), self.app,
                                     log=self.access_logger or 'default', error_log=log,
                                     handler_class=MyWSGIHandler)
        self.wsgiserver.serve_forever()

    def start(self):
        try:
            self._start_gevent()
        except (IOError, OSError) as ex:
            log.error("Error starting server: %s", ex)
            print("Error starting server: %s" % ex.strerror)
            return False
        finally:
            self.wsgiserver = None
        log.info("Server stopped")
        return True

    def _killServer(self, __, ___):
        self.stop()

    def stop(self):
        if self.wsgiserver:
            self.wsgiserver.close()
