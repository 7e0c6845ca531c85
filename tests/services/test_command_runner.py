import subprocess
import sys

import pytest

from mssqlinstaller.errors import ExternalProcessError, InstallerError
from mssqlinstaller.services.command_runner import REDACTED, CommandRunner


class DummyLogger:
    def __init__(self):
        self.messages = []

    def debug(self, message, *args, **_kwargs):
        self.messages.append(message % args if args else message)

    def warning(self, message, *args, **_kwargs):
        self.messages.append(message % args if args else message)


def test_command_runner_raises_with_stderr():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(InstallerError, match="boom"):
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            check=True,
            capture_output=True,
        )


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_accepts_listed_returncodes(monkeypatch):
    runner = CommandRunner(logger=DummyLogger())
    # POSIX truncates exit statuses to 8 bits, so the Windows restart code is stubbed
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, **_kwargs: subprocess.CompletedProcess(cmd, 3010, "", ""),
    )

    result = runner.run(
        ["setup.exe", "/Q"],
        check=True,
        capture_output=True,
        accept_returncodes=[3010],
    )

    assert result.returncode == 3010


def test_command_runner_retries_before_success(tmp_path, monkeypatch):
    runner = CommandRunner(logger=DummyLogger())
    monkeypatch.chdir(tmp_path)

    command = [
        sys.executable,
        "-c",
        (
            "from pathlib import Path;"
            "p=Path('retry-counter.txt');"
            "n=int(p.read_text()) if p.exists() else 0;"
            "p.write_text(str(n+1));"
            "import sys; sys.exit(1 if n == 0 else 0)"
        ),
    ]

    result = runner.run(
        command,
        check=True,
        capture_output=True,
        retry_count=1,
        retry_backoff_seconds=0.0,
    )

    assert result.returncode == 0


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ExternalProcessError, match="timed out"):
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )


def test_command_runner_missing_executable_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(ExternalProcessError, match="Required command not found"):
        runner.run(["definitely-not-a-real-command-xyz"], capture_output=True)


def test_command_runner_redacts_secrets_from_logs_output_and_errors():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger)
    runner.register_secret("S3cr3t!Pass")

    with pytest.raises(ExternalProcessError) as exc_info:
        runner.run(
            [
                sys.executable,
                "-c",
                "import sys; print(sys.argv[1]); sys.stderr.write('bad ' + sys.argv[1]); sys.exit(2)",
                "S3cr3t!Pass",
            ],
            check=True,
            capture_output=True,
        )

    assert "S3cr3t!Pass" not in str(exc_info.value)
    assert REDACTED in str(exc_info.value)
    assert logger.messages
    assert all("S3cr3t!Pass" not in message for message in logger.messages)


def test_redact_masks_longest_secret_first():
    runner = CommandRunner(logger=DummyLogger())
    runner.register_secret("abc")
    runner.register_secret("abcdef")

    assert runner.redact("value=abcdef") == f"value={REDACTED}"
    assert runner.redact(None) == ""
