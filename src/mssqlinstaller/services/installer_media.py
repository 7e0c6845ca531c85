"""Installation media resolution (ISO mount or direct setup.exe)."""

import ntpath
from pathlib import Path
from typing import Optional

from mssqlinstaller.constants import DISK_IMAGE_EXTENSION
from mssqlinstaller.errors import InstallerError, ResourceError
from mssqlinstaller.errors_catalog import actionable_error
from mssqlinstaller.models import InstallerDescriptor


class InstallerLocator:
    """Turns an installation medium into a usable setup.exe path."""

    SETUP_EXECUTABLE = "setup.exe"

    def __init__(self, powershell, logger, console):
        self.powershell = powershell
        self.logger = logger
        self.console = console
        self._mounted_images = set()

    def locate(self, media_path: str) -> InstallerDescriptor:
        path = Path(media_path)
        if not path.is_file():
            raise ResourceError(actionable_error("media_not_found", path=media_path))

        ext = path.suffix.lower()
        if ext == ".exe":
            self.logger.info("Using setup executable %s", media_path)
            return InstallerDescriptor(source_path=media_path, setup_path=media_path)

        if ext != DISK_IMAGE_EXTENSION:
            raise ResourceError(actionable_error("invalid_media_format", path=media_path))

        self.console.print(f"[blue]Mounting installation image {media_path}...[/blue]")
        try:
            drive_letter = self.powershell.mount_disk_image(media_path)
        except InstallerError as exc:
            raise ResourceError(f"Could not mount {media_path}: {exc}") from exc

        self._mounted_images.add(media_path)
        setup_path = ntpath.join(f"{drive_letter}:\\", self.SETUP_EXECUTABLE)
        self.logger.info("Mounted %s as %s:", media_path, drive_letter)
        return InstallerDescriptor(
            source_path=media_path,
            setup_path=setup_path,
            drive_letter=drive_letter,
        )

    def release(self, descriptor: Optional[InstallerDescriptor]):
        """Dismount the image behind ``descriptor`` if this locator mounted it."""
        if descriptor is None or not descriptor.mounted:
            return
        if descriptor.source_path not in self._mounted_images:
            return

        try:
            self.powershell.dismount_disk_image(descriptor.source_path)
        except InstallerError as exc:
            self.logger.warning("Could not dismount %s: %s", descriptor.source_path, exc)
            return

        self._mounted_images.discard(descriptor.source_path)
        self.logger.info("Dismounted %s", descriptor.source_path)
