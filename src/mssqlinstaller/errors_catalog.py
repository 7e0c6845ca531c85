"""Actionable error catalog for MssqlInstaller."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "invalid_media_format": {
        "what": "Invalid installation media format: {path}. Supported formats are `.iso` and `.exe`.",
        "next": "Point `--setup-media` to a SQL Server ISO image or to setup.exe.",
    },
    "media_not_found": {
        "what": "Installation media not found: {path}",
        "next": "Check the path or copy the media to a local disk before retrying.",
    },
    "insecure_http": {
        "what": "{label} uses insecure HTTP.",
        "next": "Switch to HTTPS or use `--allow-insecure-http` only for trusted endpoints.",
    },
    "not_elevated": {
        "what": "The installer is not running with administrative privileges.",
        "next": "Start an elevated PowerShell (Run as administrator) and run the installer again.",
    },
    "not_domain_joined": {
        "what": "This computer is not a member of an Active Directory domain.",
        "next": "Join the host to the domain or pass `--allow-workgroup` for a standalone install.",
    },
    "system_volume": {
        "what": "Directory {path} is on the system drive {drive}.",
        "next": "Place data, log, backup and tempdb directories on dedicated volumes.",
    },
    "allocation_unit": {
        "what": "Volume {drive} uses an allocation unit size of {actual} bytes instead of {expected}.",
        "next": "Reformat the volume with a 64 KB allocation unit or use `--allocation-unit-policy warn`.",
    },
    "invalid_collation": {
        "what": "Collation `{collation}` is not in the allow-list {path}.",
        "next": "Pick a collation listed in the allow-list file or extend the file.",
    },
    "collation_allow_list_required": {
        "what": "Collation `{collation}` differs from the default and no allow-list was given.",
        "next": "Pass --collation-file with the permitted collations, or keep the default collation.",
    },
    "script_not_found": {
        "what": "Script file not found: {path} (manifest line {line}).",
        "next": "Copy the script into the scripts directory or remove it from the manifest.",
    },
    "setup_failed": {
        "what": "SQL Server setup exited with code {returncode}.",
        "next": "Inspect the setup bootstrap log in {log_dir} and fix the reported problem.",
    },
    "reboot_required": {
        "what": "SQL Server setup requires a restart before the configuration can continue.",
        "next": "Restart the computer and run again with `--resume` to continue after the install step.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
