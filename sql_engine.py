#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SQL Server engine client for mssql_restore.

Thin wrapper over pyodbc that runs one statement per connection and hands
back rows as dicts. Connections are opened in autocommit mode: RESTORE
cannot run inside a user transaction.

Driver errors are translated into two buckets:
    ConnectivityError - the server could not be reached or the link dropped
    QueryError        - the server answered and rejected the statement
"""

from typing import Any, Dict, List, Optional, Sequence

# Detect whether the ODBC bridge is installed; preflight reports it
try:
    import pyodbc
    HAS_PYODBC = True
except ImportError:
    pyodbc = None
    HAS_PYODBC = False


class RestoreError(Exception):
    """Base class for every failure raised by the restore tooling."""

    def __init__(self, message: str, sqlstate: str = ""):
        super().__init__(message)
        self.message = message
        self.sqlstate = sqlstate


class ConnectivityError(RestoreError):
    """Server unreachable, login refused, or connection lost mid-statement."""


class QueryError(RestoreError):
    """The server rejected a statement."""


def quote_identifier(name: str) -> str:
    """Bracket-quote a T-SQL identifier (QUOTENAME equivalent)."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    """Render a Unicode T-SQL string literal."""
    return "N'" + value.replace("'", "''") + "'"


def is_posix_path(path: str) -> bool:
    return "/" in path and "\\" not in path


def strip_server_path(path: str) -> str:
    """Remove trailing separators, keeping a bare root like 'D:\\' or '/' intact."""
    if not path:
        return ""
    stripped = path.rstrip("\\/")
    if not stripped:
        return path[0]
    if stripped.endswith(":"):
        return stripped + "\\"
    return stripped


def join_server_path(directory: str, filename: str) -> str:
    """Join a filename onto a directory using the server's separator style."""
    sep = "/" if is_posix_path(directory) else "\\"
    directory = strip_server_path(directory)
    if directory.endswith(sep):
        return directory + filename
    return directory + sep + filename


def server_dirname(path: str) -> str:
    """Directory part of a server-side path (Windows or POSIX style)."""
    idx = max(path.rfind("\\"), path.rfind("/"))
    if idx < 0:
        return ""
    return strip_server_path(path[:idx + 1])


def server_basename(path: str) -> str:
    idx = max(path.rfind("\\"), path.rfind("/"))
    return path[idx + 1:]


def build_connection_string(
    server: str,
    driver: str,
    database: Optional[str] = None,
    trusted_connection: bool = True,
    username: str = "",
    password: str = "",
    encrypt: bool = False,
    trust_server_certificate: bool = True,
) -> str:
    """Build an ODBC connection string for SQL Server."""
    parts = [
        f"DRIVER={{{driver}}}",
        f"SERVER={server}",
    ]
    if database:
        parts.append(f"DATABASE={{{database.replace('}', '}}')}}}")
    if trusted_connection:
        parts.append("Trusted_Connection=yes")
    else:
        parts.append(f"UID={username}")
        parts.append(f"PWD={{{password.replace('}', '}}')}}}")
    parts.append(f"Encrypt={'yes' if encrypt else 'no'}")
    if trust_server_certificate:
        parts.append("TrustServerCertificate=yes")
    return ";".join(parts) + ";"


def _split_driver_error(exc: Exception):
    """Pull (sqlstate, message) out of a pyodbc error."""
    args = getattr(exc, "args", ())
    if len(args) >= 2:
        return str(args[0]), str(args[1])
    if len(args) == 1:
        return "", str(args[0])
    return "", exc.__class__.__name__


class EngineClient:
    """
    Execute queries and commands against one SQL Server instance.

    Each call to execute() opens its own connection, optionally scoped to a
    database, runs a single statement and closes the connection again.
    Unscoped statements run in master so the tool never holds a session in
    the database it is about to restore.
    """

    def __init__(
        self,
        server: str,
        driver: str = "ODBC Driver 18 for SQL Server",
        trusted_connection: bool = True,
        username: str = "",
        password: str = "",
        encrypt: bool = False,
        trust_server_certificate: bool = True,
        login_timeout: int = 15,
        query_timeout: int = 0,
    ):
        self.server = server
        self.driver = driver
        self.trusted_connection = trusted_connection
        self.username = username
        self.password = password
        self.encrypt = encrypt
        self.trust_server_certificate = trust_server_certificate
        self.login_timeout = login_timeout
        self.query_timeout = query_timeout

    @classmethod
    def from_config(cls, config: Dict, server: Optional[str] = None) -> "EngineClient":
        return cls(
            server=server or config["server_instance"],
            driver=config["driver"],
            trusted_connection=bool(config["trusted_connection"]),
            username=config.get("username") or "",
            password=config.get("password") or "",
            encrypt=bool(config["encrypt"]),
            trust_server_certificate=bool(config["trust_server_certificate"]),
            login_timeout=int(config["login_timeout"]),
            query_timeout=int(config["query_timeout"]),
        )

    def connection_string(self, database: Optional[str] = None) -> str:
        return build_connection_string(
            self.server,
            self.driver,
            database=database,
            trusted_connection=self.trusted_connection,
            username=self.username,
            password=self.password,
            encrypt=self.encrypt,
            trust_server_certificate=self.trust_server_certificate,
        )

    def _connect(self, database: Optional[str] = None):
        if not HAS_PYODBC:
            raise ConnectivityError("pyodbc is not installed; cannot reach SQL Server")
        try:
            conn = pyodbc.connect(
                self.connection_string(database or "master"),
                autocommit=True,
                timeout=self.login_timeout,
            )
        except pyodbc.Error as e:
            sqlstate, message = _split_driver_error(e)
            raise ConnectivityError(
                f"Cannot connect to {self.server}: {message}", sqlstate
            ) from e
        conn.timeout = self.query_timeout
        return conn

    def execute(
        self,
        query: str,
        params: Sequence[Any] = (),
        database: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run one statement and return the rows of its first result set.

        Every remaining result set is drained so that long-running commands
        (RESTORE ... WITH STATS emits one informational set per progress
        step) run to completion before the connection is closed. Commands
        that produce no rows return an empty list.
        """
        conn = self._connect(database)
        try:
            cursor = conn.cursor()
            rows: List[Dict[str, Any]] = []
            captured = False
            try:
                if params:
                    cursor.execute(query, *params)
                else:
                    cursor.execute(query)
                while True:
                    if cursor.description is not None and not captured:
                        columns = [col[0] for col in cursor.description]
                        rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
                        captured = True
                    if not cursor.nextset():
                        break
            except (pyodbc.OperationalError, pyodbc.InterfaceError) as e:
                sqlstate, message = _split_driver_error(e)
                raise ConnectivityError(message, sqlstate) from e
            except pyodbc.Error as e:
                sqlstate, message = _split_driver_error(e)
                raise QueryError(message, sqlstate) from e
            return rows
        finally:
            conn.close()

    def scalar(self, query: str, params: Sequence[Any] = (), database: Optional[str] = None):
        """Return the first column of the first row, or None."""
        rows = self.execute(query, params, database)
        if not rows:
            return None
        return next(iter(rows[0].values()))
