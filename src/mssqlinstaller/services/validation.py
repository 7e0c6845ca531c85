"""Input and URL validation helpers for MssqlInstaller."""

from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from mssqlinstaller.constants import DEFAULT_COLLATION, MEDIA_EXTENSIONS
from mssqlinstaller.errors import PreconditionError, ResourceError
from mssqlinstaller.errors_catalog import actionable_error


class ValidationService:
    """Validates collations, media locations and protocol policy."""

    def __init__(self, allow_insecure_http: bool = False):
        self.allow_insecure_http = allow_insecure_http

    def is_url(self, location: str) -> bool:
        scheme = urlparse(location).scheme.lower()
        return scheme in {"http", "https"}

    def get_location_extension(self, location: str) -> str:
        path = urlparse(location).path if self.is_url(location) else location
        return Path(path).suffix.lower()

    def enforce_https_policy(self, location: str, label: str, logger, console):
        if not self.is_url(location):
            return

        scheme = urlparse(location).scheme.lower()
        if scheme == "http" and not self.allow_insecure_http:
            raise ResourceError(actionable_error("insecure_http", label=label))

        if scheme == "http" and self.allow_insecure_http:
            logger.warning("Insecure HTTP enabled for %s: %s", label, location)
            console.print(
                f"[yellow]Warning:[/yellow] Using insecure HTTP for {label}. "
                "Prefer HTTPS whenever possible."
            )

    def validate_media_location(self, location: str, label: str, logger, console, extensions=MEDIA_EXTENSIONS):
        """Checks an installer location before anything is downloaded or mounted."""
        ext = self.get_location_extension(location)
        if self.is_url(location):
            self.enforce_https_policy(location, label, logger, console)
            if ext not in extensions:
                raise ResourceError(actionable_error("invalid_media_format", path=location))
            return

        path = Path(location)
        if not path.exists():
            raise ResourceError(actionable_error("media_not_found", path=location))
        if not path.is_file():
            raise ResourceError(f"{label} must be a file: {location}")
        if ext not in extensions:
            raise ResourceError(actionable_error("invalid_media_format", path=location))

    def load_collations(self, allow_list_path: str) -> List[str]:
        path = Path(allow_list_path)
        try:
            text = path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise PreconditionError(f"Could not read collation allow-list '{allow_list_path}': {exc}") from exc

        return [line.strip() for line in text.splitlines() if line.strip()]

    def validate_collation(self, collation: str, allow_list_path: Optional[str]) -> bool:
        """Check `collation` against the allow-list.

        Without a list only the default collation is accepted. Returns whether a
        list was consulted.
        """
        if not allow_list_path:
            if collation != DEFAULT_COLLATION:
                raise PreconditionError(actionable_error("collation_allow_list_required", collation=collation))
            return False

        allowed = self.load_collations(allow_list_path)
        if not allowed:
            raise PreconditionError(f"Collation allow-list '{allow_list_path}' is empty.")
        if collation not in allowed:
            raise PreconditionError(
                actionable_error("invalid_collation", collation=collation, path=allow_list_path)
            )
        return True
