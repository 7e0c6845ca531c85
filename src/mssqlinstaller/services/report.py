"""Final summary printed after a successful run."""

import ntpath
from typing import Iterable, Optional

from rich.table import Table

from mssqlinstaller.constants import (
    MAINTENANCE_JOB_CADENCE,
    PROGRAM_FILES_SQL,
    VERSION_BUILD_NUMBERS,
)
from mssqlinstaller.models import ConfigResult, InstallationRequest


def setup_log_directory(version: str) -> str:
    build = VERSION_BUILD_NUMBERS[version]
    return ntpath.join(PROGRAM_FILES_SQL, f"{build}0", "Setup Bootstrap", "Log")


def errorlog_directory(request: InstallationRequest) -> str:
    return ntpath.join(PROGRAM_FILES_SQL, request.instance_id, "MSSQL", "Log")


class SummaryReporter:
    """Renders operational reminders; no decisions are taken here."""

    def __init__(self, console):
        self.console = console

    def job_cadence_table(self) -> Table:
        table = Table(title="Expected maintenance job cadence")
        table.add_column("Job", style="cyan")
        table.add_column("Schedule")
        for job, schedule in MAINTENANCE_JOB_CADENCE:
            table.add_row(job, schedule)
        return table

    def render(
        self,
        request: InstallationRequest,
        config_results: Iterable[ConfigResult] = (),
        companion_status: Optional[str] = None,
        manifest_file: Optional[str] = None,
    ):
        console = self.console
        console.rule("[bold green]Installation complete[/bold green]")
        console.print(f"Instance: [bold]{request.server_name}[/bold] (TCP port {request.port})")
        console.print(f"Setup logs: {setup_log_directory(request.version)}")
        console.print(f"Engine error log: {errorlog_directory(request)}")
        if manifest_file:
            console.print(f"Run manifest: {manifest_file}")
        if companion_status:
            console.print(f"Management Studio: {companion_status}")

        advisory = [result for result in config_results if result.status == "failed"]
        if advisory:
            console.print("[yellow]Settings that could not be applied:[/yellow]")
            for result in advisory:
                console.print(f"  - {result.name}: {result.error}")

        console.print()
        console.print(
            "[bold]Reminder:[/bold] exclude the following directories from antivirus scanning:"
        )
        for label, path in request.storage_paths().items():
            console.print(f"  - {path} ({label})")
        console.print(
            "[bold]Reminder:[/bold] verify the maintenance jobs below are enabled and "
            "that their output files are reviewed."
        )
        console.print(self.job_cadence_table())
