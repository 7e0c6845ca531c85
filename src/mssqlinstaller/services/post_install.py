"""Post-install engine configuration."""

import ntpath
from dataclasses import dataclass
from typing import Callable, List, Optional

from mssqlinstaller.constants import HIGH_PERFORMANCE_POWER_PLAN, SYSTEM_DATABASE_FILES
from mssqlinstaller.errors import ConfigurationStepError, InstallerError
from mssqlinstaller.models import ConfigResult, InstallationRequest, TempDbLayout

PAGES_PER_MB = 128


def sql_literal(value: str) -> str:
    return "N'" + value.replace("'", "''") + "'"


def recommended_max_memory_mb(total_mb: int) -> int:
    """Memory left to the engine after the operating system reserve.

    The reserve is 1 GB, plus 1 GB for every 4 GB up to 16 GB, plus 1 GB for
    every 8 GB above 16 GB.
    """
    total_gb = total_mb / 1024
    reserve_gb = 1 + min(total_gb, 16) / 4
    if total_gb > 16:
        reserve_gb += (total_gb - 16) / 8
    return max(int(total_mb - reserve_gb * 1024), 512)


def recommended_maxdop(cpu_count: int) -> int:
    return max(1, min(cpu_count, 8))


@dataclass(frozen=True)
class ConfigOperation:
    name: str
    critical: bool
    action: Callable[[], None]


class PostInstallConfigurator:
    """Applies independent, idempotent settings to the running engine.

    Critical operations abort the run on failure. Advisory operations only
    warn unless ``strict`` is set.
    """

    def __init__(
        self,
        sql_client,
        powershell,
        command_runner,
        logger,
        console,
        request: InstallationRequest,
        layout: TempDbLayout,
        strict: bool = False,
        cost_threshold: int = 50,
        recovery_interval_minutes: int = 0,
        trace_flag: int = 3226,
        error_log_count: int = 30,
        system_db_growth_mb: int = 64,
        job_history_max_rows: int = 50000,
        job_history_max_rows_per_job: int = 1000,
    ):
        self.sql = sql_client
        self.powershell = powershell
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.request = request
        self.layout = layout
        self.strict = strict
        self.cost_threshold = cost_threshold
        self.recovery_interval_minutes = recovery_interval_minutes
        self.trace_flag = trace_flag
        self.error_log_count = error_log_count
        self.system_db_growth_mb = system_db_growth_mb
        self.job_history_max_rows = job_history_max_rows
        self.job_history_max_rows_per_job = job_history_max_rows_per_job

    def operations(self) -> List[ConfigOperation]:
        return [
            ConfigOperation("tcp_port", True, self.set_tcp_port),
            ConfigOperation("cost_threshold_for_parallelism", False, self.set_cost_threshold),
            ConfigOperation("recovery_interval", False, self.set_recovery_interval),
            ConfigOperation(f"trace_flag_{self.trace_flag}", False, self.enable_trace_flag),
            ConfigOperation("max_server_memory", True, self.set_max_memory),
            ConfigOperation("max_degree_of_parallelism", False, self.set_maxdop),
            ConfigOperation("power_plan", False, self.set_power_plan),
            ConfigOperation("error_log_retention", False, self.set_error_log_retention),
            ConfigOperation("system_database_growth", False, self.set_system_database_growth),
            ConfigOperation("job_history_retention", False, self.set_job_history_retention),
            ConfigOperation("tempdb_layout", True, self.configure_tempdb),
        ]

    def run(self) -> List[ConfigResult]:
        self.console.print("[blue]Applying post-install configuration...[/blue]")
        results: List[ConfigResult] = []

        for operation in self.operations():
            self.logger.info("Configuring %s...", operation.name)
            try:
                operation.action()
            except InstallerError as exc:
                if operation.critical or self.strict:
                    raise ConfigurationStepError(
                        f"Configuration step '{operation.name}' failed: {exc}"
                    ) from exc
                self.logger.warning("Advisory configuration step '%s' failed: %s", operation.name, exc)
                self.console.print(f"[yellow]Warning:[/yellow] {operation.name} was not applied: {exc}")
                results.append(ConfigResult(operation.name, operation.critical, "failed", str(exc)))
                continue

            results.append(ConfigResult(operation.name, operation.critical, "success"))

        self.console.print("[green]Post-install configuration applied.[/green]")
        return results

    def _sp_configure(self, name: str, value: int):
        self.sql.execute(
            "EXEC sys.sp_configure N'show advanced options', 1; RECONFIGURE WITH OVERRIDE; "
            f"EXEC sys.sp_configure {sql_literal(name)}, {int(value)}; RECONFIGURE WITH OVERRIDE;"
        )

    def set_tcp_port(self):
        self.powershell.set_tcp_port(self.request.instance_id, self.request.port)

    def set_cost_threshold(self):
        self._sp_configure("cost threshold for parallelism", self.cost_threshold)

    def set_recovery_interval(self):
        self._sp_configure("recovery interval (min)", self.recovery_interval_minutes)

    def enable_trace_flag(self):
        self.sql.execute(f"DBCC TRACEON({int(self.trace_flag)}, -1);")
        self.powershell.add_startup_parameter(self.request.instance_id, f"-T{int(self.trace_flag)}")

    def set_max_memory(self):
        total_mb = self.sql.scalar("SELECT total_physical_memory_kb / 1024 FROM sys.dm_os_sys_memory;")
        if not total_mb:
            raise InstallerError("Could not read total physical memory from the engine.")
        max_memory = recommended_max_memory_mb(int(total_mb))
        self.logger.info("Setting max server memory to %s MB (host has %s MB).", max_memory, total_mb)
        self._sp_configure("max server memory (MB)", max_memory)

    def set_maxdop(self):
        cpu_count = self.sql.scalar("SELECT cpu_count FROM sys.dm_os_sys_info;")
        if not cpu_count:
            raise InstallerError("Could not read the CPU count from the engine.")
        self._sp_configure("max degree of parallelism", recommended_maxdop(int(cpu_count)))

    def set_power_plan(self):
        self.command_runner.run(
            ["powercfg", "/setactive", HIGH_PERFORMANCE_POWER_PLAN],
            check=True,
            capture_output=True,
            timeout=60,
        )

    def set_error_log_retention(self):
        self.sql.execute(
            "EXEC master.sys.xp_instance_regwrite N'HKEY_LOCAL_MACHINE', "
            "N'Software\\Microsoft\\MSSQLServer\\MSSQLServer', N'NumErrorLogs', "
            f"REG_DWORD, {int(self.error_log_count)};"
        )

    def set_system_database_growth(self):
        statements = []
        for database, files in SYSTEM_DATABASE_FILES.items():
            for logical_name in files:
                statements.append(
                    f"ALTER DATABASE [{database}] MODIFY FILE "
                    f"(NAME = {sql_literal(logical_name)}, FILEGROWTH = {int(self.system_db_growth_mb)}MB);"
                )
        self.sql.execute("\n".join(statements))

    def set_job_history_retention(self):
        self.sql.execute(
            "EXEC msdb.dbo.sp_set_sqlagent_properties "
            f"@jobhistory_max_rows = {int(self.job_history_max_rows)}, "
            f"@jobhistory_max_rows_per_job = {int(self.job_history_max_rows_per_job)};"
        )

    def configure_tempdb(self):
        rows = self.sql.rows("SELECT name, type, size FROM tempdb.sys.database_files;")
        data_files = [(row[0], int(row[2])) for row in rows if int(row[1]) == 0]
        log_files = [(row[0], int(row[2])) for row in rows if int(row[1]) == 1]
        if not data_files or not log_files:
            raise InstallerError("Could not read the tempdb file list.")

        layout = self.layout
        statements = []
        for name, pages in data_files:
            statements.append(self._modify_file(name, pages, layout.data_size_mb, layout.data_growth_mb))
        for name, pages in log_files:
            statements.append(self._modify_file(name, pages, layout.log_size_mb, layout.log_growth_mb))

        existing = {name.lower() for name, _ in data_files}
        missing = layout.file_count - len(data_files)
        index = 2
        while missing > 0:
            name = f"temp{index}"
            index += 1
            if name in existing:
                continue
            filename = ntpath.join(self.request.tempdb_data_dir, f"{name}.ndf")
            statements.append(
                "ALTER DATABASE tempdb ADD FILE "
                f"(NAME = {sql_literal(name)}, FILENAME = {sql_literal(filename)}, "
                f"SIZE = {layout.data_size_mb}MB, FILEGROWTH = {layout.data_growth_mb}MB);"
            )
            missing -= 1

        if len(data_files) > layout.file_count:
            self.logger.warning(
                "tempdb has %s data files, more than the %s expected. Extra files are left in place.",
                len(data_files),
                layout.file_count,
            )

        self.sql.execute("\n".join(statements))

    @staticmethod
    def _modify_file(name: str, current_pages: int, size_mb: int, growth_mb: int) -> str:
        size_clause = ""
        # growing only: MODIFY FILE rejects a SIZE at or below the current size
        if current_pages < size_mb * PAGES_PER_MB:
            size_clause = f"SIZE = {size_mb}MB, "
        return (
            "ALTER DATABASE tempdb MODIFY FILE "
            f"(NAME = {sql_literal(name)}, {size_clause}FILEGROWTH = {growth_mb}MB);"
        )


def summarize(results: List[ConfigResult]) -> Optional[str]:
    failed = [result.name for result in results if result.status == "failed"]
    if not failed:
        return None
    return ", ".join(failed)
