#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SQL Server restore tool with automatic file relocation.

This script restores a single .bak file onto a target database:
1. Resolves the server's default data and backup directories
2. Terminates sessions connected to the target database
3. Reads the backup's file list (RESTORE FILELISTONLY)
4. Maps the backup's data/log files onto the target's file layout
5. Runs RESTORE DATABASE ... WITH MOVE, REPLACE
6. Verifies the restored database and prints version/size telemetry

If the restore attempt fails, the backups available in the backup
directory are listed instead so a valid name can be picked.

Usage:
    # Restore Hub_20181025.bak onto a database named after the current user
    python mssql_restore.py Hub_20181025.bak

    # Explicit server, target and backup directory
    python mssql_restore.py Hub_20181025.bak -S sql01 -d Hub_dev \\
        --backup-dir '\\\\fileserver\\backups'

    # Dry run: only resolve directories and show what would happen
    python mssql_restore.py Hub_20181025.bak --dry-run
"""

import argparse
import datetime
import getpass
import io
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import yaml

import preflight
from sql_engine import (
    ConnectivityError,
    EngineClient,
    QueryError,
    RestoreError,
    join_server_path,
    quote_identifier,
    quote_literal,
    server_dirname,
    strip_server_path,
)

# Detect if we can safely use emoji characters
USE_EMOJI = False
try:
    # Ensure UTF-8 encoding for stdout/stderr (fixes emoji printing on Windows consoles)
    if sys.stdout.encoding != 'utf-8':
        sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    if sys.stderr.encoding != 'utf-8':
        sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

    test_emoji = "✅ 📋"
    test_emoji.encode(sys.stdout.encoding)
    USE_EMOJI = True
except (UnicodeEncodeError, AttributeError, LookupError):
    USE_EMOJI = False


# ANSI color codes
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def colorize(text: str, color: str) -> str:
    """Add color to text if terminal supports it."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.ENDC}"
    return text


def emoji(char: str, fallback: str = "") -> str:
    """Return emoji if supported, otherwise fallback text."""
    return char if USE_EMOJI else fallback


def print_header(text: str):
    print()
    print(colorize("=" * 60, Colors.CYAN))
    print(colorize(f"  {text}", Colors.BOLD + Colors.CYAN))
    print(colorize("=" * 60, Colors.CYAN))
    print()


def print_success(text: str):
    print(colorize(f"{emoji('✅', '[OK]')} {text}", Colors.GREEN))


def print_warning(text: str):
    print(colorize(f"{emoji('⚠️', '[WARN]')}  {text}", Colors.YELLOW))


def print_error(text: str):
    print(colorize(f"{emoji('❌', '[ERROR]')} {text}", Colors.RED))


def print_info(text: str):
    print(colorize(f"{emoji('ℹ️', '[INFO]')}  {text}", Colors.BLUE))


def print_step(step_num: int, text: str):
    """Print a numbered step."""
    print(colorize(f"\n{emoji('📌', '[*]')} Step {step_num}: ", Colors.BOLD + Colors.YELLOW) + text)


def format_megabytes(mb: Optional[float]) -> str:
    """Format a size given in MB in human-readable form."""
    if mb is None:
        return "n/a"
    if mb >= 1024 * 1024:
        return f"{mb / (1024 * 1024):.2f} TB"
    if mb >= 1024:
        return f"{mb / 1024:.2f} GB"
    return f"{mb:.2f} MB"


# ============================================================================
# Errors raised by the restore core
# ============================================================================

class ConfigError(RestoreError):
    """Configuration file unreadable or a required setting is missing."""


class InvalidBackupError(RestoreError):
    """Backup file missing, corrupt, unreadable, or without a data file."""


class RestoreRejectedError(RestoreError):
    """The server refused the RESTORE command or no valid file mapping exists."""


class VerificationError(RestoreError):
    """The restored database could not be queried for telemetry."""


# ============================================================================
# Configuration
# ============================================================================

DEFAULT_CONFIG_PATH = 'mssql_restore.yaml'

DEFAULT_CONFIG = {
    'server_instance': 'localhost',
    'database_name': '',
    'backup_dir': '',
    'driver': '',
    'trusted_connection': True,
    'username': '',
    'password': '',
    'encrypt': False,
    'trust_server_certificate': True,
    'login_timeout': 15,
    'query_timeout': 0,
    'backup_extension': '.bak',
    'data_extension': '.mdf',
    'log_extension': '.ldf',
    'max_kill_iterations': 100,
    'log_file': 'mssql_restore.log',
}

PASSWORD_ENV_VAR = 'MSSQL_RESTORE_PASSWORD'

# Numeric settings and their smallest accepted value
INTEGER_CONFIG_KEYS = {
    'login_timeout': 0,
    'query_timeout': 0,
    'max_kill_iterations': 1,
}


def load_config(config_path: str) -> Dict:
    """Load configuration from YAML file, merged over the defaults."""
    result = DEFAULT_CONFIG.copy()
    if not config_path or not os.path.exists(config_path):
        return result

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if config is None:
        return result
    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping of settings")

    unknown = sorted(set(config) - set(DEFAULT_CONFIG))
    if unknown:
        print_warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
    for key in DEFAULT_CONFIG:
        if key in config and config[key] is not None:
            result[key] = config[key]

    for key, minimum in INTEGER_CONFIG_KEYS.items():
        value = result[key]
        if isinstance(value, bool):
            raise ConfigError(f"{key} must be a whole number, got {value!r}")
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be a whole number, got {value!r}") from None
        if value < minimum:
            raise ConfigError(f"{key} must be at least {minimum}, got {value}")
        result[key] = value
    return result


def save_config(config: Dict, config_path: str):
    """Save configuration to YAML file. The password is never written."""
    data = {key: config.get(key, DEFAULT_CONFIG[key]) for key in DEFAULT_CONFIG}
    data['password'] = ''
    with open(config_path, 'w') as f:
        f.write(f"# mssql_restore configuration, written {datetime.datetime.now():%Y-%m-%d %H:%M:%S}\n")
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    print_success(f"Config saved to: {config_path}")


def default_database_name() -> str:
    """Target database name derived from the operator's login name."""
    user = getpass.getuser() or 'restore'
    return re.sub(r'[^A-Za-z0-9_]', '_', user)


class RestoreLog:
    """Append-only log file recording every step of a restore run."""

    def __init__(self, log_file: Optional[str]):
        self.log_file = log_file
        self.lines: List[str] = []

    def start(self, request: 'RestoreRequest'):
        """Write the run header."""
        self._append(f"\n{'=' * 60}")
        self._append(f"mssql restore started: {datetime.datetime.now()}")
        self._append(
            f"server={request.server_instance} database={request.database_name} "
            f"backup={request.backup_file} dry_run={request.dry_run}"
        )
        self._append(f"{'=' * 60}\n")

    def write(self, message: str, level: str = 'INFO'):
        stamp = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self._append(f"[{stamp}] {level:<7} {message}")

    def _append(self, line: str):
        self.lines.append(line)
        if not self.log_file:
            return
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(line + '\n')


# ============================================================================
# Data model
# ============================================================================

@dataclass(frozen=True)
class RestoreRequest:
    database_name: str
    backup_file: str
    server_instance: str
    dry_run: bool = False
    backup_dir: Optional[str] = None


@dataclass
class ServerDirectories:
    data_directory: str
    backup_directory: str


@dataclass
class BackupFile:
    logical_name: str
    physical_name: str
    file_type: str

    @property
    def kind(self) -> str:
        return {'D': 'data', 'L': 'log'}.get(self.file_type, 'other')


@dataclass
class BackupFileManifest:
    data_file: BackupFile
    log_file: Optional[BackupFile]
    entries: List[BackupFile] = field(default_factory=list)


@dataclass
class DestinationFileMapping:
    data_file_path: str
    log_file_path: str
    existing_database: bool = False


@dataclass
class Success:
    database_name: str
    product_version: Optional[str]
    size_mb: Optional[float]
    service_name: Optional[str]
    connections_used: Optional[int]
    connections_max: Optional[int]
    mapping: Optional[DestinationFileMapping] = None
    sessions_terminated: int = 0
    verified: bool = True
    warnings: List[str] = field(default_factory=list)


@dataclass
class Failure:
    reason: str
    available_backups: List[str]
    backup_directory: str = ''
    error_type: str = ''


@dataclass
class DryRun:
    server_instance: str
    database_name: str
    backup_file_path: str
    backup_directory: str
    data_directory: str


RestoreOutcome = Union[Success, Failure, DryRun]


# ============================================================================
# Server inspection
# ============================================================================

SERVER_DIRECTORIES_QUERY = """
SELECT
    CAST(SERVERPROPERTY('InstanceDefaultDataPath') AS nvarchar(4000)) AS DataDirectory,
    CAST(SERVERPROPERTY('InstanceDefaultBackupPath') AS nvarchar(4000)) AS BackupDirectory
"""

BACKUP_DIRECTORY_REGISTRY_QUERY = (
    "EXEC master.dbo.xp_instance_regread N'HKEY_LOCAL_MACHINE', "
    "N'Software\\Microsoft\\MSSQLServer\\MSSQLServer', N'BackupDirectory'"
)


def get_server_directories(engine) -> ServerDirectories:
    """Read the server's default data and backup directories."""
    try:
        rows = engine.execute(SERVER_DIRECTORIES_QUERY)
        row = rows[0] if rows else {}
        data_dir = row.get('DataDirectory') or ''
        backup_dir = row.get('BackupDirectory') or ''

        # InstanceDefaultBackupPath only exists from SQL Server 2019 on
        if not backup_dir:
            reg = engine.execute(BACKUP_DIRECTORY_REGISTRY_QUERY)
            if reg:
                backup_dir = reg[0].get('Data') or ''
    except QueryError as e:
        raise ConnectivityError(f"Cannot read server configuration: {e.message}", e.sqlstate) from e

    return ServerDirectories(
        data_directory=strip_server_path(data_dir),
        backup_directory=strip_server_path(backup_dir),
    )


# ============================================================================
# Session reaping
# ============================================================================

SESSION_COUNT_QUERY = (
    "SELECT COUNT(*) AS SessionCount FROM sys.dm_exec_sessions "
    "WHERE database_id = DB_ID(?) AND session_id <> @@SPID AND is_user_process = 1"
)

NEXT_SESSION_QUERY = (
    "SELECT MIN(session_id) AS SessionId FROM sys.dm_exec_sessions "
    "WHERE database_id = DB_ID(?) AND session_id <> @@SPID AND is_user_process = 1"
)


def reap_sessions(engine, database_name: str, max_iterations: int = 100,
                  log: Optional[RestoreLog] = None) -> int:
    """
    Kill every session connected to a database, lowest session id first.

    Re-queries after each KILL because new sessions may connect while the
    loop runs. Stops after max_iterations kills even if sessions remain.

    Returns:
        Number of sessions connected when reaping started
    """
    try:
        initial = int(engine.scalar(SESSION_COUNT_QUERY, (database_name,)) or 0)
        kills = 0
        while True:
            session_id = engine.scalar(NEXT_SESSION_QUERY, (database_name,))
            if session_id is None:
                break
            if kills >= max_iterations:
                message = (f"Sessions still connected to {database_name} after "
                           f"{kills} kills; giving up on session {session_id}")
                print_warning(message)
                if log:
                    log.write(message, 'WARNING')
                break
            command = f"KILL {int(session_id)}"
            if log:
                log.write(f"Executing: {command}")
            engine.execute(command)
            kills += 1
    except QueryError as e:
        raise ConnectivityError(
            f"Cannot terminate sessions on {database_name}: {e.message}", e.sqlstate
        ) from e

    return initial


# ============================================================================
# Backup inspection and destination resolution
# ============================================================================

def resolve_backup_path(backup_file: str, backup_directory: str) -> str:
    """Use backup_file verbatim when it carries a path, else join it onto the directory."""
    if '\\' in backup_file or '/' in backup_file:
        return backup_file
    if not backup_directory:
        raise ConfigError(
            f"No backup directory configured on the server; pass --backup-dir "
            f"or a full path for {backup_file}"
        )
    return join_server_path(backup_directory, backup_file)


def read_backup_manifest(engine, backup_path: str) -> BackupFileManifest:
    """Read the file list of a backup without restoring it."""
    try:
        rows = engine.execute(f"RESTORE FILELISTONLY FROM DISK = {quote_literal(backup_path)}")
    except QueryError as e:
        raise InvalidBackupError(f"Cannot read backup {backup_path}: {e.message}", e.sqlstate) from e

    entries = [
        BackupFile(
            logical_name=row['LogicalName'],
            physical_name=row['PhysicalName'],
            file_type=(row.get('Type') or '').strip().upper(),
        )
        for row in rows
    ]
    data_files = [e for e in entries if e.kind == 'data']
    log_files = [e for e in entries if e.kind == 'log']
    if not data_files:
        raise InvalidBackupError(f"Backup {backup_path} contains no data file")

    return BackupFileManifest(
        data_file=data_files[0],
        log_file=log_files[0] if log_files else None,
        entries=entries,
    )


DATABASE_FILES_QUERY = (
    "SELECT type_desc AS TypeDesc, physical_name AS PhysicalName "
    "FROM sys.master_files WHERE database_id = DB_ID(?) ORDER BY file_id"
)


def synthesize_file_paths(directory: str, database_name: str,
                          data_extension: str = '.mdf',
                          log_extension: str = '.ldf') -> DestinationFileMapping:
    return DestinationFileMapping(
        data_file_path=join_server_path(directory, f"{database_name}{data_extension}"),
        log_file_path=join_server_path(directory, f"{database_name}_log{log_extension}"),
    )


def resolve_destination(engine, database_name: str, data_directory: str,
                        fallback_directory: str = '',
                        data_extension: str = '.mdf',
                        log_extension: str = '.ldf') -> DestinationFileMapping:
    """
    Work out where the restored data and log files must be written.

    An existing database keeps its current file locations. Otherwise the
    paths are built under the server's default data directory, or under
    fallback_directory when the server has none.
    """
    rows = engine.execute(DATABASE_FILES_QUERY, (database_name,))
    current_data = next((r['PhysicalName'] for r in rows if r['TypeDesc'] == 'ROWS'), None)
    current_log = next((r['PhysicalName'] for r in rows if r['TypeDesc'] == 'LOG'), None)

    directory = data_directory or fallback_directory
    if current_data and current_log:
        return DestinationFileMapping(current_data, current_log, existing_database=True)

    if not directory and not current_data:
        raise RestoreRejectedError(
            f"Cannot place files for {database_name}: server has no default data directory"
        )
    synthesized = synthesize_file_paths(directory or server_dirname(current_data),
                                        database_name, data_extension, log_extension)
    if current_data:
        # Database exists without a log file entry; keep its data file where it is
        return DestinationFileMapping(current_data, synthesized.log_file_path, existing_database=True)
    return synthesized


def build_restore_command(database_name: str, backup_path: str,
                          manifest: BackupFileManifest,
                          mapping: DestinationFileMapping,
                          stats: int = 10) -> str:
    """Build the RESTORE DATABASE statement relocating data and log files."""
    options = [
        f"MOVE {quote_literal(manifest.data_file.logical_name)} TO {quote_literal(mapping.data_file_path)}"
    ]
    if manifest.log_file is not None:
        options.append(
            f"MOVE {quote_literal(manifest.log_file.logical_name)} TO {quote_literal(mapping.log_file_path)}"
        )
    options.append("REPLACE")
    options.append("RECOVERY")
    if stats:
        options.append(f"STATS = {int(stats)}")
    return (
        f"RESTORE DATABASE {quote_identifier(database_name)} "
        f"FROM DISK = {quote_literal(backup_path)} "
        f"WITH {', '.join(options)}"
    )


# ============================================================================
# Verification and discovery
# ============================================================================

VERSION_QUERY = (
    "SELECT CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128)) AS ProductVersion, "
    "@@SERVICENAME AS ServiceName"
)

TELEMETRY_QUERY = (
    "SELECT CAST(SUM(CAST(size AS bigint)) * 8 / 1024.0 AS decimal(18, 2)) AS SizeMB, "
    "(SELECT COUNT(*) FROM sys.dm_exec_connections) AS ConnectionsUsed, "
    "@@MAX_CONNECTIONS AS ConnectionsMax "
    "FROM sys.database_files"
)


def verify_restore(engine, database_name: str) -> Dict:
    """Query the restored database for its version marker and size/connection telemetry."""
    try:
        version_rows = engine.execute(VERSION_QUERY, database=database_name)
        telemetry_rows = engine.execute(TELEMETRY_QUERY, database=database_name)
    except RestoreError as e:
        raise VerificationError(
            f"Restored database {database_name} could not be queried: {e.message}", e.sqlstate
        ) from e
    if not version_rows or not telemetry_rows:
        raise VerificationError(f"Restored database {database_name} returned no telemetry")

    version = version_rows[0]
    telemetry = telemetry_rows[0]
    size = telemetry.get('SizeMB')
    return {
        'product_version': version.get('ProductVersion'),
        'service_name': version.get('ServiceName'),
        'size_mb': float(size) if size is not None else None,
        'connections_used': telemetry.get('ConnectionsUsed'),
        'connections_max': telemetry.get('ConnectionsMax'),
    }


def discover_backups(engine, backup_directory: str, extension: str = '.bak',
                     log: Optional[RestoreLog] = None) -> List[str]:
    """
    List backup files in a server-side directory, newest-looking names first.

    Never raises: an unreadable directory gives an empty list.
    """
    if not backup_directory:
        return []
    try:
        rows = engine.execute("EXEC master.sys.xp_dirtree ?, 1, 1", (backup_directory,))
    except RestoreError as e:
        if log:
            log.write(f"Backup discovery failed for {backup_directory}: {e.message}", 'WARNING')
        return []

    suffix = extension.lower()
    names = [
        row['subdirectory'] for row in rows
        if row.get('file') == 1 and str(row.get('subdirectory', '')).lower().endswith(suffix)
    ]
    return sorted(names, reverse=True)


# ============================================================================
# Orchestration
# ============================================================================

def run_restore(
    engine,
    request: RestoreRequest,
    data_extension: str = '.mdf',
    log_extension: str = '.ldf',
    backup_extension: str = '.bak',
    max_kill_iterations: int = 100,
    log: Optional[RestoreLog] = None,
) -> RestoreOutcome:
    """
    Run the full restore process for one request.

    ConnectivityError and ConfigError raised while resolving directories or
    reaping sessions propagate. Anything failing from the manifest read on
    is turned into a Failure carrying the candidate backups.
    """
    log = log or RestoreLog(None)
    log.start(request)

    # Step 1: directories
    print_step(1, f"Resolving directories on {request.server_instance}")
    directories = get_server_directories(engine)
    backup_directory = strip_server_path(request.backup_dir or '') or directories.backup_directory
    backup_path = resolve_backup_path(request.backup_file, backup_directory)
    if backup_path == request.backup_file:
        # Full path given; discovery looks next to it
        backup_directory = server_dirname(backup_path)
        print_info(f"Backup directory (from path): {backup_directory}")
    elif request.backup_dir:
        print_info(f"Backup directory (override): {backup_directory}")
    else:
        print_info(f"Backup directory: {backup_directory or '(none)'}")
    print_info(f"Data directory:   {directories.data_directory or '(none)'}")
    log.write(f"Backup file {backup_path}; data directory {directories.data_directory!r}")

    if request.dry_run:
        print_info("Dry run - no sessions terminated, no restore issued")
        log.write("Dry run finished")
        return DryRun(
            server_instance=request.server_instance,
            database_name=request.database_name,
            backup_file_path=backup_path,
            backup_directory=backup_directory,
            data_directory=directories.data_directory,
        )

    # Step 2: sessions
    print_step(2, f"Terminating sessions on {request.database_name}")
    sessions = reap_sessions(engine, request.database_name, max_kill_iterations, log)
    print_info(f"Sessions connected: {sessions}")
    log.write(f"Sessions connected before restore: {sessions}")

    try:
        print_step(3, f"Reading backup file list: {backup_path}")
        manifest = read_backup_manifest(engine, backup_path)
        print_info(f"Data: {manifest.data_file.logical_name} ({manifest.data_file.physical_name})")
        if manifest.log_file is not None:
            print_info(f"Log:  {manifest.log_file.logical_name} ({manifest.log_file.physical_name})")
        else:
            print_warning("Backup contains no log file")

        print_step(4, "Resolving destination files")
        mapping = resolve_destination(
            engine, request.database_name, directories.data_directory,
            fallback_directory=server_dirname(manifest.data_file.physical_name),
            data_extension=data_extension, log_extension=log_extension,
        )
        source = "existing database" if mapping.existing_database else "server defaults"
        print_info(f"Data file -> {mapping.data_file_path} ({source})")
        print_info(f"Log file  -> {mapping.log_file_path}")

        print_step(5, f"Restoring {request.database_name}")
        command = build_restore_command(request.database_name, backup_path, manifest, mapping)
        log.write(f"Executing: {command}")
        try:
            engine.execute(command)
        except QueryError as e:
            raise RestoreRejectedError(f"Restore rejected by server: {e.message}", e.sqlstate) from e
        print_success(f"Restore of {request.database_name} completed")
        log.write("RESTORE DATABASE completed")
    except RestoreError as e:
        print_error(e.message)
        log.write(f"{e.__class__.__name__}: {e.message}", 'ERROR')
        available = discover_backups(engine, backup_directory, backup_extension, log)
        log.write(f"Found {len(available)} candidate backups in {backup_directory}")
        return Failure(
            reason=e.message,
            available_backups=available,
            backup_directory=backup_directory,
            error_type=e.__class__.__name__,
        )

    print_step(6, "Verifying restored database")
    try:
        telemetry = verify_restore(engine, request.database_name)
    except VerificationError as e:
        print_warning(e.message)
        log.write(e.message, 'WARNING')
        return Success(
            database_name=request.database_name,
            product_version=None,
            size_mb=None,
            service_name=None,
            connections_used=None,
            connections_max=None,
            mapping=mapping,
            sessions_terminated=sessions,
            verified=False,
            warnings=[e.message],
        )

    log.write(f"Verified: version={telemetry['product_version']} size_mb={telemetry['size_mb']}")
    return Success(
        database_name=request.database_name,
        mapping=mapping,
        sessions_terminated=sessions,
        **telemetry,
    )


def report_outcome(outcome: RestoreOutcome, max_listed: int = 20):
    """Print the summary for a restore outcome."""
    if isinstance(outcome, DryRun):
        print_header("Dry Run")
        print(f"  Server:         {outcome.server_instance}")
        print(f"  Database:       {outcome.database_name}")
        print(f"  Backup file:    {outcome.backup_file_path}")
        print(f"  Backup dir:     {outcome.backup_directory or '(none)'}")
        print(f"  Data dir:       {outcome.data_directory or '(none)'}")
        print()
        print_info("Re-run without --dry-run to terminate sessions and restore")
        return

    if isinstance(outcome, Success):
        print_header("Restore Complete")
        print(f"  Database:       {outcome.database_name}")
        if outcome.mapping is not None:
            print(f"  Data file:      {outcome.mapping.data_file_path}")
            print(f"  Log file:       {outcome.mapping.log_file_path}")
        print(f"  Sessions ended: {outcome.sessions_terminated}")
        if outcome.verified:
            print(f"  Version:        {outcome.product_version}")
            print(f"  Service:        {outcome.service_name}")
            print(f"  Size:           {format_megabytes(outcome.size_mb)}")
            print(f"  Connections:    {outcome.connections_used} / {outcome.connections_max}")
            print()
            print_success("Database restored and verified")
        else:
            print()
            for warning in outcome.warnings:
                print_warning(warning)
            print_warning("Database restored but could not be verified")
        return

    print_header("Restore Failed")
    print_error(outcome.reason)
    print()
    if not outcome.available_backups:
        print_info(f"No backup files found in {outcome.backup_directory or '(unknown directory)'}")
        return
    print_info(f"Backups available in {outcome.backup_directory}:")
    for name in outcome.available_backups[:max_listed]:
        print(f"    - {name}")
    if len(outcome.available_backups) > max_listed:
        print(f"    ... and {len(outcome.available_backups) - max_listed} more")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Restore a SQL Server backup onto a database, relocating its files',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Restore onto a database named after the current user
  python mssql_restore.py Hub_20181025.bak

  # Explicit server and database
  python mssql_restore.py Hub_20181025.bak -S sql01 -d Hub_dev

  # Dry run (resolve directories only)
  python mssql_restore.py Hub_20181025.bak --dry-run

  # Check driver and connectivity only
  python mssql_restore.py Hub_20181025.bak --preflight-only

Settings can be kept in a YAML file (default: mssql_restore.yaml):
  python mssql_restore.py Hub_20181025.bak -S sql01 --init-config
"""
    )

    parser.add_argument('backup', help='Backup file name (or full server-side path)')
    parser.add_argument('--server', '-S', help='SQL Server instance (default: config or localhost)')
    parser.add_argument('--backup-dir', help="Backup directory (default: server's backup directory)")
    parser.add_argument('--database', '-d', help='Target database (default: derived from login name)')
    parser.add_argument('--dry-run', '-n', action='store_true',
                        help='Resolve directories only; no sessions killed, no restore')
    parser.add_argument('--user', '-U',
                        help=f'SQL login (password from {PASSWORD_ENV_VAR}); default is Windows auth')
    parser.add_argument('--driver', help='ODBC driver name (default: best installed)')
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH,
                        help=f'Path to config file (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--init-config', action='store_true',
                        help='Write the effective settings to the config file and exit')
    parser.add_argument('--preflight-only', action='store_true',
                        help='Check driver and server connectivity only')
    parser.add_argument('--log-file', help='Log file path (default: mssql_restore.log)')

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print_error(e.message)
        return 1

    if args.server:
        config['server_instance'] = args.server
    if args.backup_dir:
        config['backup_dir'] = args.backup_dir
    if args.database:
        config['database_name'] = args.database
    if args.driver:
        config['driver'] = args.driver
    if args.log_file:
        config['log_file'] = args.log_file
    if args.user:
        config['username'] = args.user
        config['trusted_connection'] = False
    if os.environ.get(PASSWORD_ENV_VAR):
        config['password'] = os.environ[PASSWORD_ENV_VAR]

    if args.init_config:
        save_config(config, args.config)
        return 0

    print_header("Pre-flight Checks")
    driver = preflight.find_sql_server_driver(config['driver'])
    if not driver:
        print_error("No SQL Server ODBC driver found. Install pyodbc and the "
                    "Microsoft ODBC Driver for SQL Server.")
        return 1
    config['driver'] = driver

    engine = EngineClient.from_config(config)
    checks = preflight.run_preflight(engine)
    preflight.print_preflight_report(checks)
    if not checks['checks_passed']:
        print_error(f"Cannot reach {config['server_instance']}: {checks.get('error')}")
        return 1
    if args.preflight_only:
        return 0

    request = RestoreRequest(
        database_name=config['database_name'] or default_database_name(),
        backup_file=args.backup,
        server_instance=config['server_instance'],
        dry_run=args.dry_run,
        backup_dir=config['backup_dir'] or None,
    )

    print_header(f"Restoring {request.backup_file} -> {request.database_name}")
    log = RestoreLog(config['log_file'])
    try:
        outcome = run_restore(
            engine,
            request,
            data_extension=config['data_extension'],
            log_extension=config['log_extension'],
            backup_extension=config['backup_extension'],
            max_kill_iterations=int(config['max_kill_iterations']),
            log=log,
        )
    except (ConnectivityError, ConfigError) as e:
        print_error(e.message)
        log.write(f"{e.__class__.__name__}: {e.message}", 'ERROR')
        return 1

    report_outcome(outcome)
    log.write(f"Outcome: {outcome.__class__.__name__}")
    if config['log_file']:
        print()
        print_info(f"Full log written to: {config['log_file']}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
