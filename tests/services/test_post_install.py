import pytest

from mssqlinstaller.errors import ConfigurationStepError, ExternalProcessError, InstallerError
from mssqlinstaller.models import InstallationRequest, TempDbLayout
from mssqlinstaller.services.post_install import (
    PostInstallConfigurator,
    recommended_max_memory_mb,
    recommended_maxdop,
    summarize,
)


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, message, *args, **_kwargs):
        self.warnings.append(message % args if args else message)


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeSql:
    def __init__(self, memory_mb=65536, cpu_count=16, tempdb_rows=None, fail_on=None):
        self.memory_mb = memory_mb
        self.cpu_count = cpu_count
        self.tempdb_rows = tempdb_rows if tempdb_rows is not None else [
            ("tempdev", 0, 1024),
            ("templog", 1, 1024),
        ]
        self.fail_on = fail_on
        self.executed = []

    def execute(self, sql, database=None):
        if self.fail_on and self.fail_on in sql:
            raise InstallerError(f"Batch 1 failed: {self.fail_on} rejected")
        self.executed.append(sql)

    def scalar(self, sql, database=None):
        if "sys.dm_os_sys_memory" in sql:
            return self.memory_mb
        if "sys.dm_os_sys_info" in sql:
            return self.cpu_count
        return None

    def rows(self, sql, database=None):
        return self.tempdb_rows


class FakePowerShell:
    def __init__(self):
        self.ports = []
        self.startup_parameters = []

    def set_tcp_port(self, instance_id, port):
        self.ports.append((instance_id, port))

    def add_startup_parameter(self, instance_id, parameter):
        self.startup_parameters.append((instance_id, parameter))


class FakeRunner:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def run(self, cmd, **_kwargs):
        self.calls.append(cmd)
        if self.fail:
            raise ExternalProcessError("Command failed (1): powercfg /setactive")


def build_request():
    return InstallationRequest(
        instance_name="MSSQLSERVER",
        version="2019",
        edition="Developer",
        data_dir="E:\\Data",
        log_dir="F:\\Log",
        backup_dir="G:\\Backup",
        tempdb_data_dir="H:\\TempDB",
        tempdb_log_dir="H:\\TempDBLog",
        port=14330,
    )


def build_configurator(sql=None, runner=None, strict=False, logger=None, layout=None):
    return PostInstallConfigurator(
        sql_client=sql or FakeSql(),
        powershell=FakePowerShell(),
        command_runner=runner or FakeRunner(),
        logger=logger or DummyLogger(),
        console=DummyConsole(),
        request=build_request(),
        layout=layout or TempDbLayout(file_count=4, data_size_mb=1024, log_size_mb=512),
        strict=strict,
    )


def test_all_operations_run_in_order():
    configurator = build_configurator()

    results = configurator.run()

    assert [result.name for result in results] == [
        "tcp_port",
        "cost_threshold_for_parallelism",
        "recovery_interval",
        "trace_flag_3226",
        "max_server_memory",
        "max_degree_of_parallelism",
        "power_plan",
        "error_log_retention",
        "system_database_growth",
        "job_history_retention",
        "tempdb_layout",
    ]
    assert all(result.status == "success" for result in results)
    assert summarize(results) is None
    assert configurator.powershell.ports == [("MSSQL15.MSSQLSERVER", 14330)]
    assert configurator.powershell.startup_parameters == [("MSSQL15.MSSQLSERVER", "-T3226")]


def test_settings_are_sent_to_the_engine():
    sql = FakeSql(memory_mb=65536, cpu_count=16)
    configurator = build_configurator(sql=sql)

    configurator.run()
    statements = "\n".join(sql.executed)

    assert "N'cost threshold for parallelism', 50" in statements
    assert "N'recovery interval (min)', 0" in statements
    assert "DBCC TRACEON(3226, -1);" in statements
    assert "N'max server memory (MB)', 54272" in statements
    assert "N'max degree of parallelism', 8" in statements
    assert "N'NumErrorLogs', REG_DWORD, 30" in statements
    assert "ALTER DATABASE [msdb] MODIFY FILE (NAME = N'MSDBLog', FILEGROWTH = 64MB);" in statements
    assert "@jobhistory_max_rows = 50000" in statements
    assert "@jobhistory_max_rows_per_job = 1000" in statements


def test_advisory_failure_warns_and_continues():
    logger = DummyLogger()
    configurator = build_configurator(runner=FakeRunner(fail=True), logger=logger)

    results = configurator.run()

    by_name = {result.name: result for result in results}
    assert by_name["power_plan"].status == "failed"
    assert "powercfg" in by_name["power_plan"].error
    assert by_name["tempdb_layout"].status == "success"
    assert summarize(results) == "power_plan"
    assert any("power_plan" in message for message in logger.warnings)


def test_strict_mode_makes_advisory_failure_fatal():
    configurator = build_configurator(runner=FakeRunner(fail=True), strict=True)

    with pytest.raises(ConfigurationStepError, match="power_plan"):
        configurator.run()


def test_critical_failure_aborts():
    configurator = build_configurator(sql=FakeSql(memory_mb=None))

    with pytest.raises(ConfigurationStepError, match="max_server_memory"):
        configurator.run()


def test_tempdb_layout_grows_files_and_adds_missing_ones():
    sql = FakeSql(tempdb_rows=[("tempdev", 0, 1024), ("templog", 1, 1024)])
    configurator = build_configurator(sql=sql)

    configurator.configure_tempdb()
    statements = sql.executed[-1]

    assert "MODIFY FILE (NAME = N'tempdev', SIZE = 1024MB, FILEGROWTH = 512MB);" in statements
    assert "MODIFY FILE (NAME = N'templog', SIZE = 512MB, FILEGROWTH = 64MB);" in statements
    for name in ("temp2", "temp3", "temp4"):
        assert f"ADD FILE (NAME = N'{name}', FILENAME = N'H:\\TempDB\\{name}.ndf'" in statements
    assert "temp5" not in statements


def test_tempdb_layout_is_idempotent_for_existing_files():
    existing = [("tempdev", 0, 1024 * 128), ("temp2", 0, 1024 * 128), ("templog", 1, 512 * 128)]
    sql = FakeSql(tempdb_rows=existing)
    configurator = build_configurator(
        sql=sql,
        layout=TempDbLayout(file_count=2, data_size_mb=1024, log_size_mb=512),
    )

    configurator.configure_tempdb()
    statements = sql.executed[-1]

    assert "SIZE =" not in statements
    assert "ADD FILE" not in statements
    assert "FILEGROWTH = 512MB" in statements


def test_tempdb_layout_fails_without_file_list():
    configurator = build_configurator(sql=FakeSql(tempdb_rows=[]))

    with pytest.raises(InstallerError, match="tempdb file list"):
        configurator.configure_tempdb()


@pytest.mark.parametrize(
    "total_mb,expected",
    [
        (65536, 54272),
        (16384, 11264),
        (8192, 5120),
        (2048, 512),
    ],
)
def test_recommended_max_memory(total_mb, expected):
    assert recommended_max_memory_mb(total_mb) == expected


@pytest.mark.parametrize("cpu_count,expected", [(1, 1), (4, 4), (8, 8), (64, 8), (0, 1)])
def test_recommended_maxdop(cpu_count, expected):
    assert recommended_maxdop(cpu_count) == expected
