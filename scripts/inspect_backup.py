#!/usr/bin/env python3
"""
Show what a restore would do with a backup file, without touching anything.

Reads the backup's file list from the server, resolves the destination
files the restore would write, and lists the other backups sitting in the
same directory. No sessions are killed and no RESTORE DATABASE is issued.

Usage:
    python scripts/inspect_backup.py Hub_20181025.bak -S sql01 -d Hub_dev
    python scripts/inspect_backup.py -h  # Show full help
"""

import argparse
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import mssql_restore
import preflight
from sql_engine import EngineClient, RestoreError, server_dirname


def main():
    parser = argparse.ArgumentParser(
        description='Inspect a SQL Server backup and the restore mapping it would get.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Inspect a backup in the server's default backup directory
  python scripts/inspect_backup.py Hub_20181025.bak -S sql01 -d Hub_dev

  # Inspect a backup by full path
  python scripts/inspect_backup.py 'D:\\Backups\\Hub_20181025.bak' -S sql01
"""
    )
    parser.add_argument('backup', help='Backup file name or full server-side path')
    parser.add_argument('--server', '-S', help='SQL Server instance')
    parser.add_argument('--database', '-d', help='Target database name')
    parser.add_argument('--backup-dir', help='Backup directory override')
    parser.add_argument('--config', default=mssql_restore.DEFAULT_CONFIG_PATH,
                        help='Path to config file')

    args = parser.parse_args()

    try:
        config = mssql_restore.load_config(args.config)
    except mssql_restore.ConfigError as e:
        print(f"ERROR: {e.message}")
        return 1
    if args.server:
        config['server_instance'] = args.server
    driver = preflight.find_sql_server_driver(config['driver'])
    if not driver:
        print("ERROR: no SQL Server ODBC driver installed")
        return 1
    config['driver'] = driver
    engine = EngineClient.from_config(config)
    database = args.database or config['database_name'] or mssql_restore.default_database_name()

    print(f"\n{'='*60}")
    print(f"  Backup Inspection")
    print(f"{'='*60}\n")

    try:
        directories = mssql_restore.get_server_directories(engine)
        backup_dir = args.backup_dir or config['backup_dir'] or directories.backup_directory
        backup_path = mssql_restore.resolve_backup_path(args.backup, backup_dir)
        if backup_path == args.backup:
            backup_dir = server_dirname(backup_path)
    except RestoreError as e:
        print(f"ERROR: {e.message}")
        return 1

    print(f"Server:          {config['server_instance']}")
    print(f"Data directory:  {directories.data_directory or '(none)'}")
    print(f"Backup file:     {backup_path}")
    print()

    try:
        manifest = mssql_restore.read_backup_manifest(engine, backup_path)
        print("Backup file list:")
        print("-" * 60)
        for entry in manifest.entries:
            print(f"  [{entry.kind:<5}] {entry.logical_name:<30} {entry.physical_name}")
        print()

        mapping = mssql_restore.resolve_destination(
            engine, database, directories.data_directory,
            fallback_directory=server_dirname(manifest.data_file.physical_name),
            data_extension=config['data_extension'],
            log_extension=config['log_extension'],
        )
        origin = "existing database" if mapping.existing_database else "synthesized"
        print(f"Restore onto {database} ({origin}):")
        print(f"  {manifest.data_file.logical_name} -> {mapping.data_file_path}")
        if manifest.log_file is not None:
            print(f"  {manifest.log_file.logical_name} -> {mapping.log_file_path}")
        print()
        print("Command that would run:")
        print(f"  {mssql_restore.build_restore_command(database, backup_path, manifest, mapping)}")
    except RestoreError as e:
        print(f"ERROR: {e.message}")

    print()
    backups = mssql_restore.discover_backups(engine, backup_dir, config['backup_extension'])
    print(f"Backups in {backup_dir or '(unknown)'}: {len(backups)}")
    for name in backups[:20]:
        print(f"  {name}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
