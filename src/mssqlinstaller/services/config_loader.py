"""Configuration loader for MssqlInstaller."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from mssqlinstaller.errors import InstallerError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults.

    Passwords are never read from configuration files. Unattended runs take
    them from environment variables.
    """

    SUPPORTED_KEYS = {
        "instance_name",
        "sql_version",
        "edition",
        "product_key",
        "setup_media",
        "setup_media_sha256",
        "update_source",
        "data_dir",
        "log_dir",
        "backup_dir",
        "tempdb_data_dir",
        "tempdb_log_dir",
        "tempdb_data_size",
        "tempdb_log_size",
        "collation",
        "collation_file",
        "port",
        "engine_account",
        "agent_account",
        "admin_accounts",
        "scripts_dir",
        "script_manifest",
        "verify_table",
        "install_companion",
        "companion_installer",
        "non_interactive",
        "allocation_unit_policy",
        "create_directories",
        "reboot_policy",
        "allow_workgroup",
        "strict_config",
        "setup_timeout_minutes",
        "query_timeout",
        "retry_count",
        "retry_backoff_seconds",
        "allow_insecure_http",
        "resume",
        "state_file",
        "dry_run",
        "verbose",
        "log_file",
    }
    SECRET_KEYS = {
        "sa_password",
        "sapwd",
        "engine_password",
        "agent_password",
        "password",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise InstallerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise InstallerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise InstallerError("Config file must contain a YAML mapping at the root.")

        secrets = sorted(key for key in parsed if str(key).lower() in self.SECRET_KEYS)
        if secrets:
            raise InstallerError(
                "Passwords must not be stored in configuration files "
                f"({', '.join(secrets)}). Use the MSSQLINSTALLER_* environment variables."
            )

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(str(key) for key in unknown)
            raise InstallerError(f"Unknown configuration keys: {unknown_list}")

        admin_accounts = parsed.get("admin_accounts")
        if isinstance(admin_accounts, str):
            parsed["admin_accounts"] = [admin_accounts]

        return parsed
