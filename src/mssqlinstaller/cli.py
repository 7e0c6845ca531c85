import logging
import os

import click
from rich.logging import RichHandler

from .constants import (
    DEFAULT_COLLATION,
    DEFAULT_INSTANCE,
    DEFAULT_PORT,
    DEFAULT_VERIFY_TABLE,
    EDITIONS,
    SUPPORTED_VERSIONS,
)
from .core import InstallerError, MssqlInstaller
from .models import InstallationRequest, RuntimeOptions
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option("--instance-name", required=False, help=f"SQL Server instance name (default: {DEFAULT_INSTANCE})")
@click.option(
    "--sql-version",
    required=False,
    type=click.Choice(SUPPORTED_VERSIONS),
    help="SQL Server release to install",
)
@click.option("--edition", required=False, type=click.Choice(EDITIONS), help="SQL Server edition (default: Developer)")
@click.option("--product-key", required=False, help="Product key, required for licensed editions.")
@click.option("--setup-media", required=False, help="Path or HTTPS URL of the SQL Server .iso image or setup.exe")
@click.option(
    "--setup-media-sha256",
    required=False,
    help="Expected SHA-256 checksum of the setup media, checked before it is used.",
)
@click.option("--update-source", required=False, help="Directory with cumulative updates applied during setup.")
@click.option("--data-dir", required=False, help="User database data directory")
@click.option("--log-dir", required=False, help="User database log directory")
@click.option("--backup-dir", required=False, help="Default backup directory")
@click.option("--tempdb-data-dir", required=False, help="tempdb data directory")
@click.option("--tempdb-log-dir", required=False, help="tempdb log directory")
@click.option(
    "--tempdb-data-size",
    required=False,
    type=click.IntRange(min=512),
    default=None,
    help="Size of each tempdb data file in MB (minimum 512, default 1024).",
)
@click.option(
    "--tempdb-log-size",
    required=False,
    type=click.IntRange(min=64),
    default=None,
    help="Size of the tempdb log file in MB (minimum 64, default 512).",
)
@click.option("--collation", required=False, help=f"Server collation (default: {DEFAULT_COLLATION})")
@click.option(
    "--collation-file",
    required=False,
    type=click.Path(),
    help="Allow-list file with one permitted collation per line. Required for a non-default collation.",
)
@click.option("--port", required=False, type=click.IntRange(1, 65535), help=f"TCP port (default: {DEFAULT_PORT})")
@click.option("--engine-account", required=False, help="Engine service account (default: virtual account)")
@click.option("--agent-account", required=False, help="Agent service account (default: virtual account)")
@click.option(
    "--admin-account",
    "admin_accounts",
    multiple=True,
    help="Windows account or group granted sysadmin. Can be repeated.",
)
@click.option("--scripts-dir", required=False, type=click.Path(), help="Directory holding the T-SQL scripts")
@click.option(
    "--script-manifest",
    required=False,
    type=click.Path(),
    help="Manifest listing `database:fileName` entries to run in order.",
)
@click.option(
    "--verify-table",
    required=False,
    help=(
        "Table whose existence confirms the scripts ran "
        f"(default: {DEFAULT_VERIFY_TABLE} when a script manifest is given)."
    ),
)
@click.option("--install-companion", is_flag=True, default=None, help="Install SQL Server Management Studio")
@click.option(
    "--companion-installer",
    required=False,
    help="Path or HTTPS URL of the Management Studio installer.",
)
@click.option(
    "--non-interactive",
    is_flag=True,
    default=None,
    help="Never prompt. Decisions follow the policies below and secrets come from MSSQLINSTALLER_* variables.",
)
@click.option(
    "--allocation-unit-policy",
    required=False,
    type=click.Choice(["fail", "warn"]),
    help="Unattended handling of volumes not formatted with 64 KB allocation units (default: fail).",
)
@click.option(
    "--create-directories",
    is_flag=True,
    default=None,
    help="Unattended runs create missing storage directories.",
)
@click.option(
    "--reboot-policy",
    required=False,
    type=click.Choice(["defer", "restart"]),
    help="Unattended handling of a setup restart request (default: defer).",
)
@click.option("--allow-workgroup", is_flag=True, default=None, help="Allow installation on a non-domain host.")
@click.option(
    "--strict-config",
    is_flag=True,
    default=None,
    help="Fail when an advisory post-install setting cannot be applied.",
)
@click.option(
    "--setup-timeout-minutes",
    required=False,
    type=int,
    default=None,
    help="Timeout for SQL Server setup in minutes.",
)
@click.option(
    "--query-timeout",
    required=False,
    type=int,
    default=None,
    help="Timeout for each T-SQL statement in seconds.",
)
@click.option(
    "--retry-count",
    required=False,
    type=int,
    default=None,
    help="Number of retries for transient connection failures.",
)
@click.option(
    "--retry-backoff-seconds",
    required=False,
    type=float,
    default=None,
    help="Backoff time in seconds between retries.",
)
@click.option(
    "--allow-insecure-http",
    is_flag=True,
    default=None,
    help="Allow HTTP URLs (insecure). By default only HTTPS URLs are accepted.",
)
@click.option(
    "--resume",
    is_flag=True,
    default=None,
    help="Continue a run stopped for a restart using the execution state file.",
)
@click.option(
    "--state-file",
    required=False,
    type=click.Path(),
    help="Path to the run state file (default: output/run-state.json).",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Validate the host and inputs and print the installation plan without installing.",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to a YAML configuration file. Defaults to .mssqlinstaller.yml if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    instance_name,
    sql_version,
    edition,
    product_key,
    setup_media,
    setup_media_sha256,
    update_source,
    data_dir,
    log_dir,
    backup_dir,
    tempdb_data_dir,
    tempdb_log_dir,
    tempdb_data_size,
    tempdb_log_size,
    collation,
    collation_file,
    port,
    engine_account,
    agent_account,
    admin_accounts,
    scripts_dir,
    script_manifest,
    verify_table,
    install_companion,
    companion_installer,
    non_interactive,
    allocation_unit_policy,
    create_directories,
    reboot_policy,
    allow_workgroup,
    strict_config,
    setup_timeout_minutes,
    query_timeout,
    retry_count,
    retry_backoff_seconds,
    allow_insecure_http,
    resume,
    state_file,
    dry_run,
    config,
    verbose,
    log_file,
):
    """Install and configure a SQL Server instance on a Windows host."""
    logger = logging.getLogger("mssqlinstaller")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), ".mssqlinstaller.yml")
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    sql_version = _resolve_option(sql_version, config_values, "sql_version")
    setup_media = _resolve_option(setup_media, config_values, "setup_media")
    data_dir = _resolve_option(data_dir, config_values, "data_dir")
    log_dir = _resolve_option(log_dir, config_values, "log_dir")
    backup_dir = _resolve_option(backup_dir, config_values, "backup_dir")
    tempdb_data_dir = _resolve_option(tempdb_data_dir, config_values, "tempdb_data_dir")
    tempdb_log_dir = _resolve_option(tempdb_log_dir, config_values, "tempdb_log_dir")

    required = {
        "--sql-version": sql_version,
        "--setup-media": setup_media,
        "--data-dir": data_dir,
        "--log-dir": log_dir,
        "--backup-dir": backup_dir,
        "--tempdb-data-dir": tempdb_data_dir,
        "--tempdb-log-dir": tempdb_log_dir,
    }
    for option_name, value in required.items():
        if not value:
            raise click.ClickException(f"Missing required option '{option_name}' (or provide it in config).")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    admin_accounts = tuple(admin_accounts) or tuple(
        _resolve_option(None, config_values, "admin_accounts", default=["BUILTIN\\Administrators"])
    )

    try:
        request = InstallationRequest(
            instance_name=str(_resolve_option(instance_name, config_values, "instance_name", default=DEFAULT_INSTANCE)),
            version=str(sql_version),
            edition=_resolve_option(edition, config_values, "edition", default="Developer"),
            data_dir=data_dir,
            log_dir=log_dir,
            backup_dir=backup_dir,
            tempdb_data_dir=tempdb_data_dir,
            tempdb_log_dir=tempdb_log_dir,
            product_key=_resolve_option(product_key, config_values, "product_key"),
            collation=_resolve_option(collation, config_values, "collation", default=DEFAULT_COLLATION),
            port=int(_resolve_option(port, config_values, "port", default=DEFAULT_PORT)),
            engine_account=_resolve_option(engine_account, config_values, "engine_account"),
            agent_account=_resolve_option(agent_account, config_values, "agent_account"),
            admin_accounts=admin_accounts,
            update_source=_resolve_option(update_source, config_values, "update_source"),
        )
        options = RuntimeOptions(
            setup_media=setup_media,
            setup_media_sha256=_resolve_option(setup_media_sha256, config_values, "setup_media_sha256"),
            collation_file=_resolve_option(collation_file, config_values, "collation_file"),
            tempdb_data_size_mb=int(_resolve_option(tempdb_data_size, config_values, "tempdb_data_size", default=1024)),
            tempdb_log_size_mb=int(_resolve_option(tempdb_log_size, config_values, "tempdb_log_size", default=512)),
            scripts_dir=_resolve_option(scripts_dir, config_values, "scripts_dir"),
            script_manifest=_resolve_option(script_manifest, config_values, "script_manifest"),
            verify_table=_resolve_option(verify_table, config_values, "verify_table"),
            install_companion=bool(_resolve_option(install_companion, config_values, "install_companion", default=False)),
            companion_installer=_resolve_option(companion_installer, config_values, "companion_installer"),
            non_interactive=bool(_resolve_option(non_interactive, config_values, "non_interactive", default=False)),
            allocation_unit_policy=_resolve_option(
                allocation_unit_policy,
                config_values,
                "allocation_unit_policy",
                default="fail",
            ),
            create_directories=bool(
                _resolve_option(create_directories, config_values, "create_directories", default=False)
            ),
            reboot_policy=_resolve_option(reboot_policy, config_values, "reboot_policy", default="defer"),
            allow_workgroup=bool(_resolve_option(allow_workgroup, config_values, "allow_workgroup", default=False)),
            strict_config=bool(_resolve_option(strict_config, config_values, "strict_config", default=False)),
            setup_timeout_minutes=int(
                _resolve_option(setup_timeout_minutes, config_values, "setup_timeout_minutes", default=120)
            ),
            query_timeout=int(_resolve_option(query_timeout, config_values, "query_timeout", default=600)),
            retry_count=int(_resolve_option(retry_count, config_values, "retry_count", default=3)),
            retry_backoff_seconds=float(
                _resolve_option(retry_backoff_seconds, config_values, "retry_backoff_seconds", default=5.0)
            ),
            allow_insecure_http=bool(
                _resolve_option(allow_insecure_http, config_values, "allow_insecure_http", default=False)
            ),
            resume=bool(_resolve_option(resume, config_values, "resume", default=False)),
            state_file=_resolve_option(state_file, config_values, "state_file"),
            dry_run=bool(_resolve_option(dry_run, config_values, "dry_run", default=False)),
        )
        installer = MssqlInstaller(request=request, options=options)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(installer.run())


if __name__ == "__main__":
    main()
