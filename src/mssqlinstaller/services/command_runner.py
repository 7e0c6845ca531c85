"""External process execution with retries and secret redaction."""

import subprocess
import time
from typing import Iterable, List, Optional

from mssqlinstaller.errors import ExternalProcessError

REDACTED = "********"


class CommandRunner:
    """Runs setup, installers and helper tools.

    Every string that leaves this class passes through ``redact`` first, so
    secrets handed to setup on its command line never reach logs, captured
    output or error messages.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout
        self._secrets: List[str] = []

    def register_secret(self, value: Optional[str]):
        if value and value not in self._secrets:
            self._secrets.append(value)
            # longest first so overlapping secrets are fully masked
            self._secrets.sort(key=len, reverse=True)

    def redact(self, text: Optional[str]) -> str:
        if not text:
            return ""
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
        accept_returncodes: Optional[Iterable[int]] = None,
    ) -> subprocess.CompletedProcess:
        """Run ``cmd`` and return the completed process.

        Exit code 0 and ``accept_returncodes`` count as success. Other codes
        are retried (only ``retry_on_returncodes`` when given) and then
        raise, or are returned with a warning when ``check`` is False.
        """
        display = self.redact(" ".join(cmd))
        self.logger.debug("Executing: %s", display)

        timeout = timeout if timeout is not None else self.default_timeout
        accepted = {0, *(accept_returncodes or ())}
        retryable = set(retry_on_returncodes or ())
        attempts = max(1, retry_count + 1)

        attempt = 0
        while True:
            attempt += 1
            final = attempt >= attempts
            try:
                result = self._invoke(cmd, display, capture_output, timeout)
            except subprocess.TimeoutExpired:
                if final:
                    raise ExternalProcessError(f"Command timed out after {timeout}s: {display}") from None
                self._wait_before_retry("Command timed out", attempt, attempts, retry_backoff_seconds, display)
                continue

            if result.returncode in accepted:
                return result

            message = f"Command failed ({result.returncode}): {display}"
            stderr = (result.stderr or "").strip()
            if stderr:
                message = f"{message}\n{stderr}"

            if not final and (not retryable or result.returncode in retryable):
                self._wait_before_retry("Command failed", attempt, attempts, retry_backoff_seconds, message)
                continue
            if check:
                raise ExternalProcessError(message)

            self.logger.warning(message)
            return result

    def _invoke(
        self,
        cmd: List[str],
        display: str,
        capture_output: bool,
        timeout: Optional[float],
    ) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(cmd, text=True, capture_output=capture_output, timeout=timeout)
        except FileNotFoundError:
            raise ExternalProcessError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from None
        except (OSError, ValueError) as exc:
            # the original exception may echo the argument list
            raise ExternalProcessError(
                f"Failed to execute command: {display}. {self.redact(str(exc))}"
            ) from None

        if capture_output:
            result.stdout = self.redact(result.stdout)
            result.stderr = self.redact(result.stderr)
            if result.stdout:
                self.logger.debug("Command output: %s", result.stdout.strip())
        return result

    def _wait_before_retry(self, reason: str, attempt: int, attempts: int, backoff: float, detail: str):
        self.logger.warning(
            "%s on attempt %s/%s. Retrying in %.1fs.\n%s",
            reason,
            attempt,
            attempts,
            backoff,
            detail,
        )
        time.sleep(backoff)
