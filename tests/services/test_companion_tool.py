import subprocess

import pytest

from mssqlinstaller.constants import UNINSTALL_REGISTRY_KEYS
from mssqlinstaller.errors import ExternalProcessError, ResourceError
from mssqlinstaller.services.companion_tool import CompanionToolInstaller


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakePowerShell:
    def __init__(self, names=()):
        self.names = list(names)
        self.queries = []

    def registry_display_names(self, keys, pattern):
        self.queries.append((tuple(keys), pattern))
        return self.names


class FakeRunner:
    def __init__(self, returncode=0):
        self.returncode = returncode
        self.calls = []

    def run(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, self.returncode, "", "installer log")


def build_installer(powershell, runner):
    return CompanionToolInstaller(
        powershell=powershell,
        command_runner=runner,
        logger=DummyLogger(),
        console=DummyConsole(),
    )


def test_already_installed_launches_nothing(tmp_path):
    powershell = FakePowerShell(names=["Microsoft SQL Server Management Studio - 19.3"])
    runner = FakeRunner()

    status = build_installer(powershell, runner).install(str(tmp_path / "SSMS-Setup-ENU.exe"))

    assert status == "already-installed"
    assert runner.calls == []
    assert powershell.queries == [(UNINSTALL_REGISTRY_KEYS, "*SQL Server Management Studio*")]


def test_installs_quietly_when_absent(tmp_path):
    installer_path = tmp_path / "SSMS-Setup-ENU.exe"
    installer_path.write_bytes(b"MZ")
    runner = FakeRunner()

    status = build_installer(FakePowerShell(), runner).install(str(installer_path))

    assert status == "installed"
    cmd, kwargs = runner.calls[0]
    assert cmd == [str(installer_path), "/install", "/quiet", "/norestart"]
    assert kwargs["timeout"] > 0


def test_restart_exit_code_is_accepted(tmp_path):
    installer_path = tmp_path / "SSMS-Setup-ENU.exe"
    installer_path.write_bytes(b"MZ")

    status = build_installer(FakePowerShell(), FakeRunner(returncode=3010)).install(str(installer_path))

    assert status == "installed"


def test_installer_failure_raises(tmp_path):
    installer_path = tmp_path / "SSMS-Setup-ENU.exe"
    installer_path.write_bytes(b"MZ")

    with pytest.raises(ExternalProcessError, match="exited with code 1603"):
        build_installer(FakePowerShell(), FakeRunner(returncode=1603)).install(str(installer_path))


def test_missing_installer_raises(tmp_path):
    with pytest.raises(ResourceError, match="installer not found"):
        build_installer(FakePowerShell(), FakeRunner()).install(str(tmp_path / "missing.exe"))


def test_ensure_installed_does_not_fetch_when_present():
    fetches = []

    def fetch():
        fetches.append(True)
        raise ResourceError("network unreachable")

    installer = build_installer(FakePowerShell(names=["SQL Server Management Studio"]), FakeRunner())

    assert installer.ensure_installed(fetch) == "already-installed"
    assert fetches == []


def test_ensure_installed_fetches_when_absent(tmp_path):
    installer_path = tmp_path / "SSMS-Setup-ENU.exe"
    installer_path.write_bytes(b"MZ")
    runner = FakeRunner()

    status = build_installer(FakePowerShell(), runner).ensure_installed(lambda: str(installer_path))

    assert status == "installed"
    assert runner.calls[0][0][0] == str(installer_path)
