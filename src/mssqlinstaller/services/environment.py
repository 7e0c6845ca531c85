"""Host and volume validation for MssqlInstaller."""

import ntpath
import os
import re
from typing import Dict, List, Mapping, Optional

from mssqlinstaller.constants import REQUIRED_ALLOCATION_UNIT
from mssqlinstaller.errors import PreconditionError
from mssqlinstaller.errors_catalog import actionable_error

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:$")


class EnvironmentValidator:
    """Checks privileges, domain membership and storage volumes before install."""

    def __init__(
        self,
        powershell,
        decisions,
        logger,
        console,
        system_drive: Optional[str] = None,
        required_allocation_unit: int = REQUIRED_ALLOCATION_UNIT,
        os_module=os,
    ):
        self.powershell = powershell
        self.decisions = decisions
        self.logger = logger
        self.console = console
        self.system_drive = (system_drive or os.environ.get("SystemDrive") or "C:").upper()
        self.required_allocation_unit = required_allocation_unit
        self.os = os_module

    def check_privileges(self):
        if not self.powershell.is_elevated():
            raise PreconditionError(actionable_error("not_elevated"))
        self.logger.info("Administrative privileges confirmed.")

    def check_domain_membership(self, allow_workgroup: bool = False):
        if self.powershell.is_domain_member():
            self.logger.info("Host is a domain member.")
            return
        if allow_workgroup:
            self.logger.warning("Host is not domain-joined. Continuing because workgroup installs are allowed.")
            return
        raise PreconditionError(actionable_error("not_domain_joined"))

    @staticmethod
    def drive_of(path: str) -> str:
        drive, _ = ntpath.splitdrive(path)
        if not _DRIVE_PATTERN.match(drive):
            raise PreconditionError(
                f"Directory {path!r} must be an absolute path on a lettered drive (for example E:\\Data)."
            )
        return drive.upper()

    def validate_volumes(self, paths: Mapping[str, str], dry_run: bool = False) -> Dict[str, int]:
        """Validate every storage directory and return block size per drive."""
        self.console.print("[blue]Validating storage volumes...[/blue]")
        drives: List[str] = []

        for label, path in paths.items():
            drive = self.drive_of(path)
            if drive == self.system_drive:
                raise PreconditionError(
                    actionable_error("system_volume", path=f"{path} ({label})", drive=drive)
                )
            if drive not in drives:
                drives.append(drive)

        for path in dict.fromkeys(paths.values()):
            self._ensure_directory(path, dry_run=dry_run)

        block_sizes: Dict[str, int] = {}
        for drive in drives:
            block_sizes[drive] = self._check_allocation_unit(drive)

        self.console.print("[green]Storage volumes validated.[/green]")
        return block_sizes

    def _ensure_directory(self, path: str, dry_run: bool = False):
        if self.os.path.isdir(path):
            return
        if dry_run:
            self.logger.warning("Directory %s does not exist and would have to be created.", path)
            return

        if not self.decisions.create_missing_directory(path):
            raise PreconditionError(f"Required directory does not exist: {path}")

        try:
            self.os.makedirs(path, exist_ok=True)
        except OSError as exc:
            raise PreconditionError(f"Could not create directory {path}: {exc}") from exc
        self.logger.info("Created directory %s", path)

    def _check_allocation_unit(self, drive: str) -> int:
        block_size = self.powershell.volume_block_size(drive)
        if block_size is None:
            raise PreconditionError(f"Could not determine the allocation unit size of volume {drive}.")

        if block_size == self.required_allocation_unit:
            self.logger.info("Volume %s allocation unit size: %s bytes.", drive, block_size)
            return block_size

        self.console.print(
            f"[yellow]Warning:[/yellow] Volume {drive} uses {block_size} byte allocation units "
            f"(expected {self.required_allocation_unit})."
        )
        if not self.decisions.continue_with_allocation_mismatch(
            drive, block_size, self.required_allocation_unit
        ):
            raise PreconditionError(
                actionable_error(
                    "allocation_unit",
                    drive=drive,
                    actual=str(block_size),
                    expected=str(self.required_allocation_unit),
                )
            )
        self.logger.warning("Continuing with allocation unit size %s on %s.", block_size, drive)
        return block_size
