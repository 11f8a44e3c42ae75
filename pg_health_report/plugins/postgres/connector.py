import itertools
import logging

import psycopg2
import psycopg2.errors
import psycopg2.pool

from pg_health_report.utils.catalogue import ResultSet
from pg_health_report.utils.errors import (
    RunnerConnectivityError,
    RunnerStatementError,
    RunnerTimeoutError,
)
from pg_health_report.utils.json_utils import row_to_text

logger = logging.getLogger(__name__)


class PostgresConnector:
    """
    Runs diagnostic queries against one PostgreSQL database.

    Each call to run() checks a connection out of a thread-safe pool, opens a
    read-only transaction, applies the per-check timeout with
    SET LOCAL statement_timeout, streams at most ``row_limit`` rows through a
    server-side cursor and rolls the transaction back. The pool holds one
    connection per concurrent worker, so no connection is ever shared by two
    checks at once.
    """

    def __init__(self, settings, max_connections=None):
        self.settings = settings
        self.max_connections = max_connections or settings.get('max_workers', 1)
        self.pool = None
        self.version_info = {}
        self.has_pgstat = False
        self._cursor_ids = itertools.count(1)

    @property
    def target_identity(self):
        """The ``user@host:port/database`` string shown in report headers."""
        return (
            f"{self.settings['user']}@{self.settings['host']}:"
            f"{self.settings.get('port', 5432)}/{self.settings['database']}"
        )

    def connect(self):
        """
        Opens the connection pool and reads basic server facts.

        Raises:
            RunnerConnectivityError: If the database cannot be reached.
        """
        connect_args = {
            'host': self.settings['host'],
            'port': self.settings.get('port', 5432),
            'dbname': self.settings['database'],
            'user': self.settings['user'],
            'connect_timeout': self.settings.get('connect_timeout', 10),
            'application_name': self.settings.get('application_name', 'pg_health_report'),
        }
        # Without a password libpq falls back to the pgpass file.
        if self.settings.get('password'):
            connect_args['password'] = self.settings['password']
        if self.settings.get('pgpass_file'):
            connect_args['passfile'] = self.settings['pgpass_file']

        try:
            self.pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=self.max_connections,
                **connect_args
            )
        except psycopg2.Error as e:
            print(f"❌ Error connecting to PostgreSQL: {e}")
            raise RunnerConnectivityError(f"Cannot connect to {self.target_identity}: {e}") from e

        self.version_info = self._get_version_info()
        self.has_pgstat = self._check_pg_stat_statements()
        print(f"✅ Connected to PostgreSQL {self.version_info.get('version_string', 'unknown')} at {self.target_identity}")
        if not self.has_pgstat:
            logger.warning("pg_stat_statements is not installed; checks that read it will be reported as failed")

    def disconnect(self):
        """Closes every pooled connection."""
        if self.pool is not None and not self.pool.closed:
            self.pool.closeall()
            print("🔌 Disconnected from PostgreSQL.")
        self.pool = None

    def run(self, query, row_limit, timeout=None):
        """Executes a diagnostic query and returns at most ``row_limit`` rows.

        The limit is enforced by how many rows are fetched from a server-side
        cursor, never by editing the query text, so the query's own ordering
        decides which rows are kept.

        Args:
            query (str): The diagnostic statement. Must be a single SELECT-like
                statement without a trailing semicolon.
            row_limit (int): Maximum number of rows to fetch.
            timeout (float, optional): Per-statement timeout in seconds.

        Returns:
            ResultSet: Column names and stringified rows.

        Raises:
            RunnerConnectivityError: The pool is not open or the connection died.
            RunnerTimeoutError: The statement was cancelled by statement_timeout.
            RunnerStatementError: The server rejected the statement.
        """
        if self.pool is None or self.pool.closed:
            raise RunnerConnectivityError("Not connected", connection_lost=True)

        try:
            conn = self.pool.getconn()
        except psycopg2.Error as e:
            raise RunnerConnectivityError(f"Cannot obtain a connection: {e}", connection_lost=True) from e

        try:
            return self._run_on_connection(conn, query, row_limit, timeout)
        except psycopg2.errors.QueryCanceled as e:
            raise RunnerTimeoutError(f"Statement cancelled after {timeout}s: {_first_line(e)}") from e
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            if conn.closed:
                raise RunnerConnectivityError(f"Connection lost: {_first_line(e)}", connection_lost=True) from e
            raise RunnerStatementError(_first_line(e), pgcode=e.pgcode) from e
        except psycopg2.Error as e:
            raise RunnerStatementError(_first_line(e), pgcode=e.pgcode) from e
        finally:
            self._release(conn)

    def _run_on_connection(self, conn, query, row_limit, timeout):
        conn.set_session(readonly=True, autocommit=False)
        if timeout:
            with conn.cursor() as cursor:
                cursor.execute("SET LOCAL statement_timeout = %s", (int(timeout * 1000),))

        cursor = conn.cursor(name=f"health_report_{next(self._cursor_ids)}")
        try:
            cursor.itersize = row_limit
            cursor.execute(query)
            rows = cursor.fetchmany(row_limit)
            # A named cursor only exposes its description after the first fetch.
            columns = [desc[0] for desc in cursor.description] if cursor.description else []
        finally:
            cursor.close()
        return ResultSet(columns=columns, rows=[row_to_text(row) for row in rows])

    def _release(self, conn):
        if not conn.closed:
            try:
                conn.rollback()
            except psycopg2.Error as e:
                logger.debug(f"Rollback after check failed: {e}")
        try:
            self.pool.putconn(conn, close=bool(conn.closed))
        except psycopg2.pool.PoolError as e:
            logger.debug(f"Could not return connection to pool: {e}")

    def _get_version_info(self):
        """Get PostgreSQL version information."""
        try:
            result = self.run(
                "SELECT current_setting('server_version_num') AS version_num, "
                "current_setting('server_version') AS version_string",
                row_limit=1,
            )
            version_num, version_string = result.rows[0]
            version_num = int(version_num.strip())
            return {
                'version_num': version_num,
                'version_string': version_string.strip(),
                'major_version': version_num // 10000,
            }
        except (RunnerStatementError, RunnerTimeoutError, IndexError, ValueError) as e:
            logger.debug(f"Could not read server version: {e}")
            return {'version_num': 0, 'version_string': 'unknown', 'major_version': 0}

    def _check_pg_stat_statements(self):
        """Checks whether the pg_stat_statements extension is installed."""
        try:
            result = self.run(
                "SELECT EXISTS (SELECT 1 FROM pg_extension WHERE extname = 'pg_stat_statements')",
                row_limit=1,
            )
        except (RunnerStatementError, RunnerTimeoutError) as e:
            logger.debug(f"Could not check for pg_stat_statements: {e}")
            return False
        return bool(result.rows) and result.rows[0][0] == 'true'


def _first_line(error):
    """Server messages carry LINE/HINT detail after the first line."""
    message = str(error).strip()
    return message.splitlines()[0] if message else error.__class__.__name__
