import os
import platform
import socket
import sys

import psutil

from sql_engine import HAS_PYODBC, RestoreError, pyodbc

PREFERRED_DRIVERS = (
    "ODBC Driver 18 for SQL Server",
    "ODBC Driver 17 for SQL Server",
    "ODBC Driver 13 for SQL Server",
    "SQL Server Native Client 11.0",
    "SQL Server",
)

PING_QUERY = "SELECT @@SERVERNAME AS ServerName, @@VERSION AS Version"


def get_cpu_info():
    cpu_freq = psutil.cpu_freq()
    return {
        'cpu_count': os.cpu_count(),
        'cpu_freq': cpu_freq.current if cpu_freq else None,
        'cpu_model': platform.processor() or platform.uname().processor,
    }


def get_memory_info():
    mem = psutil.virtual_memory()
    return {
        'total': mem.total,
        'available': mem.available,
        'percent': mem.percent,
    }


def get_client_info():
    return {
        'hostname': socket.gethostname(),
        'platform': platform.platform(),
        'python': platform.python_version(),
        'cpu': get_cpu_info(),
        'memory': get_memory_info(),
    }


def list_odbc_drivers():
    if not HAS_PYODBC:
        return []
    return list(pyodbc.drivers())


def find_sql_server_driver(preferred=None):
    """
    Pick the ODBC driver to use.

    An explicitly configured driver wins if it is installed. Otherwise the
    newest Microsoft driver is chosen, then anything mentioning SQL Server.
    """
    installed = list_odbc_drivers()
    if not installed:
        return None
    if preferred:
        return preferred if preferred in installed else None
    for name in PREFERRED_DRIVERS:
        if name in installed:
            return name
    for name in installed:
        if 'sql server' in name.lower():
            return name
    return None


def ping_server(engine):
    rows = engine.execute(PING_QUERY)
    row = rows[0] if rows else {}
    version = (row.get('Version') or '').splitlines()
    return {
        'server_name': row.get('ServerName'),
        'version': version[0].strip() if version else '',
    }


def run_preflight(engine):
    """Check the driver and ping the server before any restore work starts."""
    results = {
        'server': engine.server,
        'driver': engine.driver,
        'client': get_client_info(),
        'checks_passed': True,
        'error': None,
    }
    try:
        results.update(ping_server(engine))
    except RestoreError as e:
        results['checks_passed'] = False
        results['error'] = e.message
    return results


def print_preflight_report(summary, stream=None):
    out = stream or sys.stdout
    client = summary['client']
    cpu = client['cpu']
    mem = client['memory']
    print(f"🖥️  Client: {client['hostname']} | {client['platform']} | Python {client['python']}", file=out)
    print(f"💾 CPU cores: {cpu['cpu_count']} | RAM: {mem['available'] // (1024**3)} GB available "
          f"({mem['percent']:.1f}% used)", file=out)
    print(f"🔌 ODBC driver: {summary['driver']}", file=out)
    if summary['checks_passed']:
        print(f"✅ Server {summary['server']} reachable: {summary.get('server_name')}", file=out)
        print(f"   {summary.get('version')}", file=out)
    else:
        print(f"❌ Server {summary['server']} unreachable: {summary['error']}", file=out)
