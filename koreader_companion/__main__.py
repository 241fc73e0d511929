# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import sys

from .cli import main

if __name__ == '__main__':
    sys.exit(main())
