"""SQL Server access through pyodbc with bounded connection retries."""

import time
from contextlib import closing
from typing import Any, Iterable, List, Optional

from mssqlinstaller.errors import InstallerError


class SqlClient:
    """Runs T-SQL against the freshly installed instance using Windows authentication."""

    PREFERRED_DRIVERS = (
        "ODBC Driver 18 for SQL Server",
        "ODBC Driver 17 for SQL Server",
        "ODBC Driver 13 for SQL Server",
        "SQL Server Native Client 11.0",
        "SQL Server",
    )

    def __init__(
        self,
        server: str,
        logger,
        connect_timeout: int = 30,
        query_timeout: int = 600,
        retry_count: int = 3,
        retry_backoff_seconds: float = 5.0,
        pyodbc_module=None,
    ):
        self.server = server
        self.logger = logger
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self.retry_count = retry_count
        self.retry_backoff_seconds = retry_backoff_seconds
        self._pyodbc = pyodbc_module
        self._driver: Optional[str] = None

    @property
    def pyodbc(self):
        # imported on first use; the driver manager only exists on the target host
        if self._pyodbc is None:
            import pyodbc

            self._pyodbc = pyodbc
        return self._pyodbc

    def detect_driver(self) -> str:
        if self._driver:
            return self._driver

        available = self.pyodbc.drivers()
        self.logger.debug("Available ODBC drivers: %s", available)
        for driver in self.PREFERRED_DRIVERS:
            if driver in available:
                self._driver = driver
                self.logger.info("Using ODBC driver: %s", driver)
                return driver

        raise InstallerError("No SQL Server ODBC driver found. Install ODBC Driver 17 or 18 for SQL Server.")

    def connection_string(self, database: Optional[str] = None) -> str:
        parts = [
            f"DRIVER={{{self.detect_driver()}}}",
            f"SERVER={self.server}",
            f"DATABASE={database or 'master'}",
            "Trusted_Connection=yes",
            "TrustServerCertificate=yes",
            "Application Name=mssqlinstaller",
        ]
        return ";".join(parts)

    def connect(self, database: Optional[str] = None):
        transient = (self.pyodbc.OperationalError, self.pyodbc.InterfaceError)
        max_attempts = max(1, self.retry_count + 1)
        conn_str = self.connection_string(database)

        for attempt in range(1, max_attempts + 1):
            try:
                connection = self.pyodbc.connect(
                    conn_str,
                    autocommit=True,
                    timeout=self.connect_timeout,
                )
                connection.timeout = self.query_timeout
                return connection
            except transient as exc:
                if attempt < max_attempts:
                    self.logger.warning(
                        "Connection to %s failed on attempt %s/%s. Retrying in %.1fs: %s",
                        self.server,
                        attempt,
                        max_attempts,
                        self.retry_backoff_seconds,
                        exc,
                    )
                    time.sleep(self.retry_backoff_seconds)
                    continue
                raise InstallerError(
                    f"Could not connect to {self.server} after {max_attempts} attempt(s): {exc}"
                ) from exc
            except self.pyodbc.Error as exc:
                raise InstallerError(f"Could not connect to {self.server}: {exc}") from exc

        raise InstallerError(f"Could not connect to {self.server}.")

    def execute_batches(self, batches: Iterable[str], database: Optional[str] = None):
        """Execute batches in order on one connection, stopping at the first error."""
        with closing(self.connect(database)) as connection:
            for index, batch in enumerate(batches, start=1):
                try:
                    with closing(connection.cursor()) as cursor:
                        cursor.execute(batch)
                        while cursor.nextset():
                            pass
                except self.pyodbc.Error as exc:
                    raise InstallerError(f"Batch {index} failed: {exc}") from exc

    def execute(self, sql: str, database: Optional[str] = None):
        self.execute_batches([sql], database=database)

    def rows(self, sql: str, database: Optional[str] = None) -> List[Any]:
        with closing(self.connect(database)) as connection:
            try:
                with closing(connection.cursor()) as cursor:
                    cursor.execute(sql)
                    return list(cursor.fetchall())
            except self.pyodbc.Error as exc:
                raise InstallerError(f"Query failed: {exc}") from exc

    def scalar(self, sql: str, database: Optional[str] = None) -> Any:
        """Return the first column of the first row, or None for an empty result."""
        result = self.rows(sql, database=database)
        if not result:
            return None
        return result[0][0]
