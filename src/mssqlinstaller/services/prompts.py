"""Operator decision providers.

Validation and installation code never prompts directly. It asks a decision
provider, which either asks the operator (interactive runs) or applies a
configured policy (unattended runs).
"""

import os
from typing import Mapping, Optional

from rich.prompt import Confirm, Prompt

from mssqlinstaller.constants import SECRET_ENV_VARS
from mssqlinstaller.errors import PreconditionError


class InteractiveDecisionProvider:
    def __init__(self, console):
        self.console = console

    def confirm(self, question: str, default: bool = False) -> bool:
        return Confirm.ask(question, console=self.console, default=default)

    def continue_with_allocation_mismatch(self, drive: str, actual: int, expected: int) -> bool:
        return self.confirm(
            f"Volume {drive} uses {actual} byte allocation units (expected {expected}). "
            "Continue anyway?"
        )

    def create_missing_directory(self, path: str) -> bool:
        return self.confirm(f"Directory {path} does not exist. Create it?", default=True)

    def restart_now(self) -> bool:
        return self.confirm("SQL Server setup requires a restart. Restart the computer now?")

    def secret(self, key: str, prompt: str) -> str:
        while True:
            value = Prompt.ask(prompt, console=self.console, password=True)
            if value:
                return value
            self.console.print("[yellow]A value is required.[/yellow]")


class UnattendedDecisionProvider:
    """Applies fixed policies instead of prompting."""

    ALLOCATION_POLICIES = ("fail", "warn")
    REBOOT_POLICIES = ("defer", "restart")

    def __init__(
        self,
        logger,
        allocation_unit_policy: str = "fail",
        create_directories: bool = False,
        reboot_policy: str = "defer",
        environ: Optional[Mapping[str, str]] = None,
    ):
        if allocation_unit_policy not in self.ALLOCATION_POLICIES:
            raise PreconditionError(f"Unknown allocation unit policy: {allocation_unit_policy}")
        if reboot_policy not in self.REBOOT_POLICIES:
            raise PreconditionError(f"Unknown reboot policy: {reboot_policy}")
        self.logger = logger
        self.allocation_unit_policy = allocation_unit_policy
        self.create_directories = create_directories
        self.reboot_policy = reboot_policy
        self.environ = os.environ if environ is None else environ

    def continue_with_allocation_mismatch(self, drive: str, actual: int, expected: int) -> bool:
        if self.allocation_unit_policy == "warn":
            self.logger.warning(
                "Volume %s uses %s byte allocation units (expected %s). Continuing by policy.",
                drive,
                actual,
                expected,
            )
            return True
        return False

    def create_missing_directory(self, path: str) -> bool:
        return self.create_directories

    def restart_now(self) -> bool:
        return self.reboot_policy == "restart"

    def secret(self, key: str, prompt: str) -> str:
        env_var = SECRET_ENV_VARS[key]
        value = self.environ.get(env_var)
        if not value:
            raise PreconditionError(
                f"{prompt} is required in unattended mode. Set the {env_var} environment variable."
            )
        return value
