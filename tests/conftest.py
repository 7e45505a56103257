import os
import re
import sys

import pytest

# Add parent directory to path so the flat modules import without installing
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sql_engine import QueryError

MOVE_PATTERN = re.compile(r"MOVE N'((?:[^']|'')*)' TO N'((?:[^']|'')*)'")


def _literal_after(query: str, marker: str) -> str:
    """Extract the N'...' literal following marker in a statement."""
    tail = query.split(marker, 1)[1]
    match = re.search(r"N'((?:[^']|'')*)'", tail)
    return match.group(1).replace("''", "'")


class FakeEngine:
    """
    In-memory stand-in for the SQL Server engine client.

    Answers the statements issued by the restore tool from simple state and
    records every call as (query, params, database) in ``statements``.
    Statements containing a key of ``failures`` raise the mapped exception.
    """

    def __init__(self, data_directory='D:\\Data\\', backup_directory='D:\\Backups'):
        self.server = 'sql01'
        self.driver = 'ODBC Driver 18 for SQL Server'
        self.data_directory = data_directory
        self.backup_directory = backup_directory
        self.registry_backup_directory = None
        self.backups = {}
        self.directory_listing = {}
        self.databases = {}
        self.sessions = {}
        self.system_sessions = set()
        self.respawn_sessions = False
        self.failures = {}
        self.statements = []
        self.restores = []
        self.version_row = {'ProductVersion': '15.0.2000.5', 'ServiceName': 'MSSQLSERVER'}
        self.telemetry_row = {'SizeMB': 512.0, 'ConnectionsUsed': 7, 'ConnectionsMax': 32767}
        self._next_session = 500

    # -- helpers used by tests -------------------------------------------

    def add_backup(self, path, data=('Hub_Data', 'C:\\SQL\\DATA\\Hub.mdf'),
                   log=('Hub_Log', 'C:\\SQL\\DATA\\Hub_log.ldf'), extra=()):
        rows = [{'LogicalName': data[0], 'PhysicalName': data[1], 'Type': 'D', 'FileId': 1}]
        if log:
            rows.append({'LogicalName': log[0], 'PhysicalName': log[1], 'Type': 'L', 'FileId': 2})
        for logical, physical, file_type in extra:
            rows.append({'LogicalName': logical, 'PhysicalName': physical, 'Type': file_type, 'FileId': 3})
        self.backups[path] = rows

    def add_database(self, name, data_path, log_path):
        self.databases[name] = [
            {'TypeDesc': 'ROWS', 'PhysicalName': data_path},
            {'TypeDesc': 'LOG', 'PhysicalName': log_path},
        ]

    def queries(self, fragment):
        return [q for q, _, _ in self.statements if fragment in q]

    @property
    def kill_commands(self):
        return [q for q, _, _ in self.statements if q.startswith('KILL ')]

    # -- engine client interface ------------------------------------------

    def scalar(self, query, params=(), database=None):
        rows = self.execute(query, params, database)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    def execute(self, query, params=(), database=None):
        self.statements.append((query, tuple(params), database))
        for fragment, exc in self.failures.items():
            if fragment in query:
                raise exc

        if 'InstanceDefaultDataPath' in query:
            return [{'DataDirectory': self.data_directory, 'BackupDirectory': self.backup_directory}]
        if 'xp_instance_regread' in query:
            if self.registry_backup_directory is None:
                return []
            return [{'Value': 'BackupDirectory', 'Data': self.registry_backup_directory}]
        if 'AS SessionCount' in query:
            return [{'SessionCount': len(self._visible_sessions(query, params[0]))}]
        if 'MIN(session_id)' in query:
            ids = self._visible_sessions(query, params[0])
            return [{'SessionId': min(ids) if ids else None}]
        if query.startswith('KILL '):
            return self._kill(int(query.split()[1]))
        if query.startswith('RESTORE FILELISTONLY'):
            path = _literal_after(query, 'DISK =')
            if path not in self.backups:
                raise QueryError(f"Cannot open backup device '{path}'. Operating system error 2", '42000')
            return list(self.backups[path])
        if 'sys.master_files' in query:
            return list(self.databases.get(params[0], []))
        if query.startswith('RESTORE DATABASE'):
            return self._restore(query)
        if "SERVERPROPERTY('ProductVersion')" in query:
            return [dict(self.version_row)]
        if 'sys.database_files' in query:
            return [dict(self.telemetry_row)]
        if 'xp_dirtree' in query:
            listing = [{'subdirectory': 'archive', 'depth': 1, 'file': 0}]
            listing.extend(
                {'subdirectory': name, 'depth': 1, 'file': 1}
                for name in self.directory_listing.get(params[0], [])
            )
            return listing
        if '@@SERVERNAME' in query:
            return [{'ServerName': 'SQL01', 'Version': 'Microsoft SQL Server 2019 (RTM)\n\tCopyright'}]
        raise AssertionError(f"Unexpected statement: {query}")

    def _visible_sessions(self, query, database):
        ids = self.sessions.get(database, [])
        if 'is_user_process = 1' in query:
            return [i for i in ids if i not in self.system_sessions]
        return list(ids)

    def _kill(self, session_id):
        if session_id in self.system_sessions:
            raise QueryError('Only user processes can be killed.', '42000')
        for ids in self.sessions.values():
            if session_id in ids:
                ids.remove(session_id)
                if self.respawn_sessions:
                    self._next_session += 1
                    ids.append(self._next_session)
                return []
        raise QueryError(f"Process ID {session_id} is not an active process ID.", '42000')

    def _restore(self, query):
        name = re.match(r"RESTORE DATABASE \[((?:[^\]]|\]\])*)\]", query).group(1).replace(']]', ']')
        moves = [(l.replace("''", "'"), p.replace("''", "'")) for l, p in MOVE_PATTERN.findall(query)]
        self.restores.append({'database': name, 'moves': moves, 'query': query})
        files = []
        for logical, physical in moves:
            kind = 'LOG' if physical.lower().endswith('.ldf') else 'ROWS'
            files.append({'TypeDesc': kind, 'PhysicalName': physical})
        self.databases[name] = files
        return []


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def hub_engine():
    """Server with Hub_20181025.bak in D:\\Backups and no Hub_dev database."""
    engine = FakeEngine()
    engine.add_backup('D:\\Backups\\Hub_20181025.bak')
    engine.directory_listing['D:\\Backups'] = [
        'Hub_20181024.bak',
        'Hub_20181025.bak',
        'notes.txt',
        'Other_20170101.BAK',
    ]
    return engine
