"""Retrieval of installer media that may live behind an HTTPS URL."""

import hashlib
import os
from contextlib import suppress
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from mssqlinstaller.errors import ResourceError

CHUNK_SIZE = 1024 * 1024


def file_sha256(path: str) -> str:
    hasher = hashlib.sha256()
    with open(path, "rb") as file_obj:
        for chunk in iter(lambda: file_obj.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


class DownloadService:
    """Turns a media location into a local file, checking its SHA-256 when one is given.

    Downloads land in a ``.part`` file first so an interrupted transfer of a
    multi-gigabyte image is never mistaken for usable media.
    """

    def __init__(self, validation_service, logger, console, requests_module, timeout: float = 60.0):
        self.validation_service = validation_service
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout

    def fetch(
        self,
        location: str,
        download_dir: str,
        description: str,
        expected_sha256: Optional[str] = None,
    ) -> str:
        """Return a local path for ``location``, downloading it when it is a URL."""
        if not self.validation_service.is_url(location):
            if expected_sha256:
                self.verify_checksum(location, expected_sha256, description)
            return location

        url_path = urlparse(location).path
        filename = os.path.basename(url_path) or "download" + Path(url_path).suffix
        target_path = os.path.join(download_dir, filename)

        if expected_sha256 and os.path.isfile(target_path):
            if file_sha256(target_path) == expected_sha256.lower():
                self.logger.info("Reusing verified download %s", target_path)
                return target_path
            self.logger.warning("Discarding %s: checksum does not match.", target_path)

        self.download_file(location, target_path, description, expected_sha256=expected_sha256)
        return target_path

    def verify_checksum(self, path: str, expected_sha256: str, description: str):
        try:
            actual = file_sha256(path)
        except OSError as exc:
            raise ResourceError(f"Could not read {description} for checksum validation: {exc}") from exc
        if actual != expected_sha256.lower():
            raise ResourceError(
                f"Checksum mismatch for {description}. Expected {expected_sha256}, but got {actual}."
            )
        self.logger.info("Checksum of %s verified.", description)

    def download_file(
        self,
        url: str,
        dest_path: str,
        description: str = "Downloading...",
        expected_sha256: Optional[str] = None,
    ):
        self.validation_service.enforce_https_policy(url, description, self.logger, self.console)
        self.logger.info("Downloading %s to %s", url, dest_path)
        os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
        partial_path = dest_path + ".part"

        try:
            digest = self._stream(url, partial_path, description)
            if expected_sha256 and digest != expected_sha256.lower():
                raise ResourceError(
                    f"Checksum mismatch for {description}. Expected {expected_sha256}, but got {digest}."
                )
            os.replace(partial_path, dest_path)
        except self.requests.RequestException as exc:
            raise ResourceError(f"Download failed for {description}: {exc}") from exc
        except OSError as exc:
            raise ResourceError(f"Could not store {description} at {dest_path}: {exc}") from exc
        finally:
            if os.path.exists(partial_path):
                with suppress(OSError):
                    os.remove(partial_path)

    def _stream(self, url: str, path: str, description: str) -> str:
        hasher = hashlib.sha256()
        with self.requests.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            total_size = int(response.headers.get("Content-Length", 0)) or None

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                TimeRemainingColumn(),
                console=self.console,
            ) as progress:
                task = progress.add_task(f"[cyan]{description}", total=total_size)
                with open(path, "wb") as file_obj:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            file_obj.write(chunk)
                            hasher.update(chunk)
                            progress.update(task, advance=len(chunk))
        return hasher.hexdigest()
