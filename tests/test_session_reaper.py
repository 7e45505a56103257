"""
Tests for session reaping in mssql_restore.py
"""
import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import mssql_restore
from sql_engine import ConnectivityError, QueryError


class TestReapSessions:
    """Test reap_sessions kill loop"""

    def test_no_sessions(self, fake_engine):
        count = mssql_restore.reap_sessions(fake_engine, 'Hub_dev')

        assert count == 0
        assert fake_engine.kill_commands == []

    def test_kills_each_session_once(self, fake_engine):
        fake_engine.sessions['Hub_dev'] = [61, 53, 72]

        count = mssql_restore.reap_sessions(fake_engine, 'Hub_dev')

        assert count == 3
        assert fake_engine.kill_commands == ['KILL 53', 'KILL 61', 'KILL 72']
        assert fake_engine.sessions['Hub_dev'] == []

    def test_requeries_after_each_kill(self, fake_engine):
        fake_engine.sessions['Hub_dev'] = [53, 54]

        mssql_restore.reap_sessions(fake_engine, 'Hub_dev')

        # count, then (lookup, kill) per session, then the final empty lookup
        assert len(fake_engine.queries('MIN(session_id)')) == 3

    def test_only_targets_named_database(self, fake_engine):
        fake_engine.sessions['Hub_dev'] = [53]
        fake_engine.sessions['Other'] = [60, 61]

        mssql_restore.reap_sessions(fake_engine, 'Hub_dev')

        assert fake_engine.kill_commands == ['KILL 53']
        assert fake_engine.sessions['Other'] == [60, 61]

    def test_system_sessions_are_left_alone(self, fake_engine):
        """Background system sessions in the database are never killed"""
        fake_engine.sessions['Hub_dev'] = [12, 60]
        fake_engine.system_sessions.add(12)

        count = mssql_restore.reap_sessions(fake_engine, 'Hub_dev')

        assert count == 1
        assert fake_engine.kill_commands == ['KILL 60']
        assert 'KILL 12' not in fake_engine.kill_commands
        assert fake_engine.sessions['Hub_dev'] == [12]

    def test_session_queries_filter_user_processes(self):
        assert 'is_user_process = 1' in mssql_restore.SESSION_COUNT_QUERY
        assert 'is_user_process = 1' in mssql_restore.NEXT_SESSION_QUERY

    def test_iteration_cap_with_respawning_sessions(self, fake_engine):
        fake_engine.sessions['Hub_dev'] = [53, 54]
        fake_engine.respawn_sessions = True
        log = mssql_restore.RestoreLog(None)

        count = mssql_restore.reap_sessions(fake_engine, 'Hub_dev', max_iterations=5, log=log)

        assert count == 2
        assert len(fake_engine.kill_commands) == 5
        assert any('WARNING' in line for line in log.lines)

    def test_kill_logged_before_issue(self, fake_engine):
        fake_engine.sessions['Hub_dev'] = [53]
        log = mssql_restore.RestoreLog(None)

        mssql_restore.reap_sessions(fake_engine, 'Hub_dev', log=log)

        assert any('KILL 53' in line for line in log.lines)

    def test_kill_failure_propagates(self, fake_engine):
        fake_engine.sessions['Hub_dev'] = [53]
        fake_engine.failures['KILL'] = QueryError('User does not have permission to use the KILL statement.')

        with pytest.raises(ConnectivityError) as excinfo:
            mssql_restore.reap_sessions(fake_engine, 'Hub_dev')

        assert 'Hub_dev' in excinfo.value.message

    def test_connection_loss_propagates(self, fake_engine):
        fake_engine.failures['SessionCount'] = ConnectivityError('Communication link failure')

        with pytest.raises(ConnectivityError):
            mssql_restore.reap_sessions(fake_engine, 'Hub_dev')
