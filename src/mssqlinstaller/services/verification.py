"""Post-install sanity checks against the running engine."""

from typing import Tuple

from packaging import version

from mssqlinstaller.constants import VERIFY_TABLE_EXISTS, VERIFY_TABLE_MISSING
from mssqlinstaller.errors import InstallerError, VerificationError


def quote_identifier(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


def parse_table_target(target: str) -> Tuple[str, str, str]:
    """Split `database.schema.table` into parts.

    `schema.table` and a bare table name resolve against master, and a bare
    table name uses the dbo schema.
    """
    parts = [part.strip() for part in target.strip().split(".")]
    if any(not part for part in parts) or len(parts) > 3:
        raise VerificationError(f"Invalid table name: {target!r}. Use `database.schema.table`.")
    if len(parts) == 1:
        return "master", "dbo", parts[0]
    if len(parts) == 2:
        return "master", parts[0], parts[1]
    return parts[0], parts[1], parts[2]


class VerificationProbe:
    def __init__(self, sql_client, logger, console):
        self.sql = sql_client
        self.logger = logger
        self.console = console

    def sentinel_query(self, database: str, schema: str, table: str) -> str:
        object_name = f"{quote_identifier(database)}.{quote_identifier(schema)}.{quote_identifier(table)}"
        literal = object_name.replace("'", "''")
        return (
            f"IF OBJECT_ID(N'{literal}', N'U') IS NOT NULL "
            f"SELECT N'{VERIFY_TABLE_EXISTS}' ELSE SELECT N'{VERIFY_TABLE_MISSING}';"
        )

    def verify_table(self, database: str = "master", schema: str = "dbo", table: str = "CommandLog"):
        """Succeed only when the sentinel query answers `Table exists`."""
        name = f"{database}.{schema}.{table}"
        self.console.print(f"[blue]Verifying {name}...[/blue]")
        try:
            result = self.sql.rows(self.sentinel_query(database, schema, table), database=database)
        except InstallerError as exc:
            raise VerificationError(f"Verification query for {name} failed: {exc}") from exc

        if not result:
            raise VerificationError(f"Verification query for {name} returned no rows.")
        value = result[0][0]
        if value is None:
            raise VerificationError(f"Verification query for {name} returned NULL.")

        value = str(value).strip()
        if value == VERIFY_TABLE_MISSING:
            raise VerificationError(f"Table {name} does not exist. The maintenance scripts did not create it.")
        if value != VERIFY_TABLE_EXISTS:
            raise VerificationError(f"Unexpected verification result for {name}: {value!r}")

        self.console.print(f"[green]{name} exists.[/green]")

    def verify_engine_version(self, expected_major: int) -> str:
        try:
            reported = self.sql.scalar("SELECT CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128));")
        except InstallerError as exc:
            raise VerificationError(f"Could not read the engine version: {exc}") from exc
        if not reported:
            raise VerificationError("The engine did not report a product version.")

        try:
            parsed = version.parse(str(reported).strip())
        except version.InvalidVersion as exc:
            raise VerificationError(f"Unrecognized engine version: {reported!r}") from exc

        if parsed.major != expected_major:
            raise VerificationError(
                f"Engine reports version {parsed} but build family {expected_major} was requested."
            )
        self.logger.info("Engine version %s matches the requested release.", parsed)
        return str(parsed)
