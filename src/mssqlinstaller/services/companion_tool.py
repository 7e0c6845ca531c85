"""Management Studio installation."""

import os

from mssqlinstaller.constants import COMPANION_TOOL_PATTERN, SETUP_REBOOT_RETURNCODE, UNINSTALL_REGISTRY_KEYS
from mssqlinstaller.errors import ExternalProcessError, ResourceError


class CompanionToolInstaller:
    ALREADY_INSTALLED = "already-installed"
    INSTALLED = "installed"

    def __init__(self, powershell, command_runner, logger, console, timeout: float = 3600):
        self.powershell = powershell
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.timeout = timeout

    def is_installed(self, pattern: str = COMPANION_TOOL_PATTERN) -> bool:
        names = self.powershell.registry_display_names(UNINSTALL_REGISTRY_KEYS, pattern)
        if names:
            self.logger.info("Found installed product(s): %s", ", ".join(names))
        return bool(names)

    def ensure_installed(self, fetch_installer, pattern: str = COMPANION_TOOL_PATTERN) -> str:
        """Install unless present. `fetch_installer` is called only when needed."""
        if self.is_installed(pattern):
            self.console.print("[green]Management Studio is already installed.[/green]")
            return self.ALREADY_INSTALLED
        return self._run_installer(fetch_installer())

    def install(self, installer_path: str, pattern: str = COMPANION_TOOL_PATTERN) -> str:
        return self.ensure_installed(lambda: installer_path, pattern)

    def _run_installer(self, installer_path: str) -> str:
        if not os.path.isfile(installer_path):
            raise ResourceError(f"Management Studio installer not found: {installer_path}")

        self.console.print("[blue]Installing Management Studio...[/blue]")
        result = self.command_runner.run(
            [installer_path, "/install", "/quiet", "/norestart"],
            check=False,
            capture_output=True,
            timeout=self.timeout,
            accept_returncodes=[SETUP_REBOOT_RETURNCODE],
        )
        if result.returncode == SETUP_REBOOT_RETURNCODE:
            self.logger.warning("Management Studio installed. A restart is advisable to complete it.")
        elif result.returncode != 0:
            details = (result.stderr or result.stdout or "").strip()
            raise ExternalProcessError(
                f"Management Studio installer exited with code {result.returncode}. {details[-1000:]}".strip()
            )

        self.console.print("[green]Management Studio installed.[/green]")
        return self.INSTALLED
