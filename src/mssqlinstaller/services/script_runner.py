"""Ordered execution of the post-install T-SQL scripts listed in a manifest."""

import os
import re
from typing import List

from mssqlinstaller.errors import InstallerError, ScriptExecutionError
from mssqlinstaller.errors_catalog import actionable_error
from mssqlinstaller.models import ScriptEntry

BATCH_SEPARATOR = re.compile(r"^\s*GO\s*(?:--.*)?$", re.IGNORECASE)


def split_batches(script_text: str) -> List[str]:
    """Split a script on `GO` separator lines, dropping empty batches."""
    batches: List[str] = []
    current: List[str] = []
    for line in script_text.splitlines():
        if BATCH_SEPARATOR.match(line):
            batch = "\n".join(current).strip()
            if batch:
                batches.append(batch)
            current = []
            continue
        current.append(line)

    batch = "\n".join(current).strip()
    if batch:
        batches.append(batch)
    return batches


class ScriptRunner:
    """Reads the `database:fileName` manifest and runs each script in order."""

    def __init__(self, sql_client, scripts_dir: str, logger, console):
        self.sql = sql_client
        self.scripts_dir = scripts_dir
        self.logger = logger
        self.console = console

    def parse_manifest(self, manifest_path: str) -> List[ScriptEntry]:
        try:
            with open(manifest_path, "r", encoding="utf-8-sig") as file_obj:
                lines = file_obj.read().splitlines()
        except OSError as exc:
            raise ScriptExecutionError(f"Could not read script manifest '{manifest_path}': {exc}") from exc

        entries: List[ScriptEntry] = []
        malformed: List[str] = []
        for line_number, raw_line in enumerate(lines, start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue

            database, separator, file_name = line.partition(":")
            database = database.strip()
            file_name = file_name.strip()
            if not separator or not database or not file_name:
                malformed.append(f"line {line_number}: {raw_line!r}")
                continue
            entries.append(ScriptEntry(database=database, file_name=file_name, line_number=line_number))

        if malformed:
            raise ScriptExecutionError(
                "Malformed script manifest entries (expected `database:fileName`): " + "; ".join(malformed)
            )
        return entries

    def script_path(self, entry: ScriptEntry) -> str:
        return os.path.join(self.scripts_dir, entry.file_name)

    def validate(self, entries: List[ScriptEntry]):
        """Fail before anything runs when a listed script is missing."""
        for entry in entries:
            path = self.script_path(entry)
            if not os.path.isfile(path):
                raise ScriptExecutionError(
                    actionable_error("script_not_found", path=path, line=str(entry.line_number))
                )
        self.logger.info("All %s manifest script(s) are present.", len(entries))

    def load(self, manifest_path: str) -> List[ScriptEntry]:
        entries = self.parse_manifest(manifest_path)
        self.validate(entries)
        return entries

    def run(self, entries: List[ScriptEntry]) -> List[str]:
        self.validate(entries)
        executed: List[str] = []

        for entry in entries:
            path = self.script_path(entry)
            self.console.print(f"[blue]Running {entry.file_name} on {entry.database}...[/blue]")
            try:
                with open(path, "r", encoding="utf-8-sig") as file_obj:
                    batches = split_batches(file_obj.read())
            except (OSError, UnicodeDecodeError) as exc:
                raise ScriptExecutionError(f"Could not read script '{path}': {exc}") from exc

            self.logger.debug("%s: %s batch(es)", entry.file_name, len(batches))
            try:
                self.sql.execute_batches(batches, database=entry.database)
            except InstallerError as exc:
                raise ScriptExecutionError(
                    f"Script {entry.file_name} (manifest line {entry.line_number}) failed on "
                    f"database {entry.database}: {exc}"
                ) from exc
            executed.append(entry.file_name)

        self.console.print(f"[green]Executed {len(executed)} script(s).[/green]")
        return executed
