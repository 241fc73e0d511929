# -*- coding: utf-8 -*-
# KOReader Companion – progress sync server derived from Calibre-Web Automated
# Copyright (C) 2024-2025 Calibre-Web Automated contributors
# Copyright (C) 2025 KOReader Companion contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import hashlib
import os
import sys

from sqlalchemy import create_engine, exc, event
from sqlalchemy import Column, String, Integer
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from . import logger

log = logger.create()

session = None
app_DB_path = None
engine = None
Base = declarative_base()


class User(Base):
    __tablename__ = 'user'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True)
    name = Column(String(64), unique=True, nullable=False)
    # Werkzeug hash of the key KOReader sends in x-auth-key (md5 of the sync password)
    sync_password = Column(String, default=None)

    @property
    def has_sync_password(self):
        return bool(self.sync_password)

    def __repr__(self):
        return '<User %r>' % self.name


def koreader_key(password):
    """KOReader never sends the plain password, only its md5 digest."""
    return hashlib.md5(password.encode('utf-8')).hexdigest()  # nosec - protocol requirement


def is_valid_user_name(name):
    """User names double as the directory of the user's books below the library root."""
    if not isinstance(name, str) or not name or len(name) > 64:
        return False
    if name in ('.', '..') or '\0' in name:
        return False
    return not any(sep in name for sep in ('/', os.sep, os.altsep) if sep)


def get_user(_session, name):
    if not name:
        return None
    return _session.query(User).filter(User.name == name).one_or_none()


def set_sync_password(_session, name, password):
    """Create the user if needed and store a salted hash of its KOReader key."""
    if not is_valid_user_name(name):
        raise ValueError("Invalid user name: {!r}".format(name))
    if not password:
        raise ValueError("Password is required")
    user = get_user(_session, name)
    if user is None:
        user = User(name=name)
        _session.add(user)
        log.info("Created sync user '%s'", name)
    user.sync_password = generate_password_hash(koreader_key(password))
    try:
        _session.commit()
    except exc.SQLAlchemyError:
        _session.rollback()
        raise
    log.info("Stored sync password for user '%s'", name)
    return user


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_db_engine(app_db_path):
    connect_args = {"timeout": 30, "check_same_thread": False}
    if app_db_path == ":memory:":
        # a single shared connection, otherwise every checkout sees an empty database
        new_engine = create_engine("sqlite://", echo=False, connect_args=connect_args, poolclass=StaticPool)
    else:
        new_engine = create_engine("sqlite:///{0}".format(app_db_path), echo=False, connect_args=connect_args)
    event.listen(new_engine, 'connect', _enable_sqlite_pragmas)
    return new_engine


def init_db(app_db_path):
    # Open session for database connection
    global session
    global app_DB_path
    global engine

    # Import the model modules so their tables are registered on Base
    from . import library  # noqa: F401
    from .progress_syncing import models

    app_DB_path = app_db_path
    engine = create_db_engine(app_db_path)

    Session = scoped_session(sessionmaker())
    Session.configure(bind=engine)
    session = Session

    try:
        Base.metadata.create_all(engine)
        models.ensure_sync_tables(engine)
    except exc.OperationalError as e:
        log.error("Settings database %s is not usable: %s", app_db_path, e)
        print('Settings database is not writeable. Exiting...')
        sys.exit(2)
    log.debug("Database %s initialised", app_db_path)
    return session


def dispose():
    global session
    global engine

    old_session = session
    session = None
    if old_session:
        old_session.remove()
    if engine is not None:
        engine.dispose()
        engine = None
