from rich.console import Console

from mssqlinstaller.models import ConfigResult, InstallationRequest
from mssqlinstaller.services.report import SummaryReporter, errorlog_directory, setup_log_directory


def build_request(**overrides):
    values = {
        "instance_name": "SQLPROD",
        "version": "2022",
        "edition": "Developer",
        "data_dir": "D:\\Data",
        "log_dir": "L:\\Logs",
        "backup_dir": "B:\\Backup",
        "tempdb_data_dir": "T:\\TempDB",
        "tempdb_log_dir": "T:\\TempDBLog",
        "port": 14330,
    }
    values.update(overrides)
    return InstallationRequest(**values)


def test_setup_log_directory_uses_build_number():
    assert setup_log_directory("2022").endswith("160\\Setup Bootstrap\\Log")
    assert setup_log_directory("2016").endswith("130\\Setup Bootstrap\\Log")


def test_errorlog_directory_uses_instance_id():
    assert errorlog_directory(build_request()).endswith("MSSQL16.SQLPROD\\MSSQL\\Log")


def test_render_lists_reminders_and_advisory_failures():
    console = Console(record=True, width=200)
    results = [
        ConfigResult("tcp_port", True, "success"),
        ConfigResult("power_plan", False, "failed", "powercfg exited with code 1"),
    ]

    SummaryReporter(console).render(
        build_request(),
        config_results=results,
        companion_status="already-installed",
        manifest_file="output/run-manifest.json",
    )
    output = console.export_text()

    assert "localhost\\SQLPROD" in output
    assert "TCP port 14330" in output
    assert "power_plan: powercfg exited with code 1" in output
    assert "tcp_port:" not in output
    assert "T:\\TempDBLog (tempdb log)" in output
    assert "antivirus" in output
    assert "IndexOptimize - USER_DATABASES" in output
    assert "Management Studio: already-installed" in output
