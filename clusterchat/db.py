"""Thin wrapper around a MySQL connection used by the data-access layer."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import pymysql

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_USER = "root"
PASSWORD = "password"
DEFAULT_DATABASE = "chat"
DEFAULT_PORT = 3306


class MySQL:
    """One database connection; ``update`` and ``query`` report failure by value."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        user: str = DEFAULT_USER,
        password: str = PASSWORD,
        database: str = DEFAULT_DATABASE,
        port: int = DEFAULT_PORT,
    ) -> None:
        self.host = host
        self.user = user
        self.password = password
        self.database = database
        self.port = port
        self._conn: Any = None

    def connect(self) -> bool:
        """Open the connection; return whether it succeeded."""
        try:
            self._conn = pymysql.connect(
                host=self.host,
                user=self.user,
                password=self.password,
                database=self.database,
                port=self.port,
                charset="utf8mb4",
                autocommit=True,
            )
        except pymysql.MySQLError as exc:
            log.info("connect mysql fail! %s", exc)
            self._conn = None
            return False
        log.info("connect mysql success!")
        return True

    def update(self, sql: str, params: Sequence[Any] | None = None) -> bool:
        """Run a modifying statement; return whether it succeeded."""
        if self._conn is None:
            log.info("%s update failed: not connected", sql)
            return False
        try:
            with self._conn.cursor() as cursor:
                cursor.execute(sql, params)
        except pymysql.MySQLError as exc:
            log.info("%s update failed! %s", sql, exc)
            return False
        return True

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple] | None:
        """Run a select; return its rows, or ``None`` on failure."""
        if self._conn is None:
            log.info("%s query failed: not connected", sql)
            return None
        try:
            with self._conn.cursor() as cursor:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
        except pymysql.MySQLError as exc:
            log.info("%s query failed! %s", sql, exc)
            return None

    def insert_id(self) -> int:
        """Return the key generated by the last insert on this connection."""
        if self._conn is None:
            raise RuntimeError("not connected")
        return int(self._conn.insert_id())

    def close(self) -> None:
        """Release the connection, if any."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "MySQL":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()