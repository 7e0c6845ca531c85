"""Shared domain models for MssqlInstaller."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .constants import (
    DEFAULT_COLLATION,
    DEFAULT_INSTANCE,
    DEFAULT_PORT,
    EDITIONS,
    FREE_EDITIONS,
    MAX_TEMPDB_FILES,
    MIN_TEMPDB_DATA_SIZE_MB,
    MIN_TEMPDB_LOG_SIZE_MB,
    SUPPORTED_VERSIONS,
    VERSION_BUILD_NUMBERS,
)
from .errors import PreconditionError

MANAGED_ACCOUNT_PREFIXES = ("nt service\\", "nt authority\\")


def is_managed_account(account: str) -> bool:
    """Virtual and managed service accounts have no password."""
    lowered = account.strip().lower()
    return lowered.startswith(MANAGED_ACCOUNT_PREFIXES) or lowered.endswith("$")


def default_engine_account(instance_name: str) -> str:
    if instance_name.upper() == DEFAULT_INSTANCE:
        return "NT Service\\MSSQLSERVER"
    return f"NT Service\\MSSQL${instance_name}"


def default_agent_account(instance_name: str) -> str:
    if instance_name.upper() == DEFAULT_INSTANCE:
        return "NT Service\\SQLSERVERAGENT"
    return f"NT Service\\SQLAgent${instance_name}"


@dataclass(frozen=True)
class InstallationRequest:
    """Immutable choices for one installation run."""

    instance_name: str
    version: str
    edition: str
    data_dir: str
    log_dir: str
    backup_dir: str
    tempdb_data_dir: str
    tempdb_log_dir: str
    product_key: Optional[str] = None
    collation: str = DEFAULT_COLLATION
    port: int = DEFAULT_PORT
    engine_account: Optional[str] = None
    agent_account: Optional[str] = None
    admin_accounts: Tuple[str, ...] = ("BUILTIN\\Administrators",)
    update_source: Optional[str] = None
    features: Tuple[str, ...] = ("SQLENGINE",)

    def __post_init__(self):
        if not self.instance_name or not self.instance_name.strip():
            raise PreconditionError("Instance name must not be empty.")
        if self.version not in SUPPORTED_VERSIONS:
            raise PreconditionError(
                f"Invalid SQL Server version '{self.version}'. "
                f"Supported versions: {', '.join(SUPPORTED_VERSIONS)}"
            )
        if self.edition not in EDITIONS:
            raise PreconditionError(
                f"Invalid edition '{self.edition}'. Supported editions: {', '.join(EDITIONS)}"
            )
        if self.edition not in FREE_EDITIONS and not (self.product_key or "").strip():
            raise PreconditionError(
                f"A product key is required for the {self.edition} edition."
            )
        if not 0 < int(self.port) < 65536:
            raise PreconditionError(f"Invalid TCP port: {self.port}")
        if not self.admin_accounts:
            raise PreconditionError("At least one sysadmin account or group is required.")

        # frozen: defaults that depend on the instance name are filled in place
        if not self.engine_account:
            object.__setattr__(self, "engine_account", default_engine_account(self.instance_name))
        if not self.agent_account:
            object.__setattr__(self, "agent_account", default_agent_account(self.instance_name))

    @property
    def is_default_instance(self) -> bool:
        return self.instance_name.upper() == DEFAULT_INSTANCE

    @property
    def build_number(self) -> int:
        return VERSION_BUILD_NUMBERS[self.version]

    @property
    def instance_id(self) -> str:
        return f"MSSQL{self.build_number}.{self.instance_name.upper()}"

    @property
    def server_name(self) -> str:
        if self.is_default_instance:
            return "localhost"
        return f"localhost\\{self.instance_name}"

    @property
    def engine_service(self) -> str:
        if self.is_default_instance:
            return "MSSQLSERVER"
        return f"MSSQL${self.instance_name}"

    @property
    def agent_service(self) -> str:
        if self.is_default_instance:
            return "SQLSERVERAGENT"
        return f"SQLAgent${self.instance_name}"

    @property
    def shared_service_account(self) -> bool:
        return (self.engine_account or "").lower() == (self.agent_account or "").lower()

    def storage_paths(self) -> Dict[str, str]:
        return {
            "data": self.data_dir,
            "log": self.log_dir,
            "backup": self.backup_dir,
            "tempdb data": self.tempdb_data_dir,
            "tempdb log": self.tempdb_log_dir,
        }

    def resume_metadata(self) -> Dict[str, object]:
        return {
            "instance_name": self.instance_name,
            "version": self.version,
            "edition": self.edition,
            "collation": self.collation,
            "port": self.port,
            "storage_paths": self.storage_paths(),
        }


@dataclass(frozen=True)
class TempDbLayout:
    """Tempdb geometry derived from the host core count."""

    file_count: int
    data_size_mb: int
    log_size_mb: int
    data_growth_mb: int = 512
    log_growth_mb: int = 64

    def __post_init__(self):
        if self.data_size_mb < MIN_TEMPDB_DATA_SIZE_MB:
            raise PreconditionError(
                f"Tempdb data file size must be at least {MIN_TEMPDB_DATA_SIZE_MB} MB."
            )
        if self.log_size_mb < MIN_TEMPDB_LOG_SIZE_MB:
            raise PreconditionError(
                f"Tempdb log file size must be at least {MIN_TEMPDB_LOG_SIZE_MB} MB."
            )
        if not 1 <= self.file_count <= MAX_TEMPDB_FILES:
            raise PreconditionError(
                f"Tempdb file count must be between 1 and {MAX_TEMPDB_FILES}."
            )

    @classmethod
    def for_cores(cls, cores: Optional[int], data_size_mb: int, log_size_mb: int) -> "TempDbLayout":
        return cls(
            file_count=tempdb_file_count(cores),
            data_size_mb=data_size_mb,
            log_size_mb=log_size_mb,
        )


def tempdb_file_count(cores: Optional[int]) -> int:
    return max(1, min(cores or 1, MAX_TEMPDB_FILES))


@dataclass(frozen=True)
class Credential:
    username: str
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class SecretBundle:
    """Secrets collected once per run and kept in memory only."""

    sa_password: str = field(repr=False)
    engine_password: Optional[str] = field(default=None, repr=False)
    agent_password: Optional[str] = field(default=None, repr=False)

    def credentials(self, request: InstallationRequest) -> Tuple[Credential, Credential, Credential]:
        return (
            Credential("sa", self.sa_password),
            Credential(request.engine_account, self.engine_password),
            Credential(request.agent_account, self.agent_password),
        )

    def values(self) -> List[str]:
        return [
            value
            for value in (self.sa_password, self.engine_password, self.agent_password)
            if value
        ]


@dataclass(frozen=True)
class InstallerDescriptor:
    source_path: str
    setup_path: str
    drive_letter: Optional[str] = None

    @property
    def mounted(self) -> bool:
        return self.drive_letter is not None


@dataclass(frozen=True)
class SetupConfiguration:
    """Settings handed to SQL Server setup.

    Plain options go to ConfigurationFile.ini, secret options are only
    passed on the command line.
    """

    options: Dict[str, Union[str, Tuple[str, ...]]]
    secret_options: Dict[str, str] = field(default_factory=dict, repr=False)

    def to_ini(self) -> str:
        lines = ["; SQL Server configuration file", "[OPTIONS]"]
        for key, value in self.options.items():
            if isinstance(value, tuple):
                rendered = " ".join(f'"{item}"' for item in value)
            else:
                rendered = f'"{value}"'
            lines.append(f"{key}={rendered}")
        return "\n".join(lines) + "\n"

    def secret_arguments(self) -> List[str]:
        return [f"/{key}={value}" for key, value in self.secret_options.items()]


@dataclass(frozen=True)
class ScriptEntry:
    database: str
    file_name: str
    line_number: int


class InstallState(str, Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    NEEDS_REBOOT = "needs_reboot"


class RebootSignal(str, Enum):
    NO_REBOOT = "no_reboot"
    REBOOT_REQUIRED = "reboot_required"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class InstallOutcome:
    returncode: int
    signal: RebootSignal
    state: InstallState
    stdout: str = ""
    stderr: str = ""

    @property
    def needs_reboot(self) -> bool:
        return self.state == InstallState.NEEDS_REBOOT


@dataclass(frozen=True)
class ConfigResult:
    name: str
    critical: bool
    status: str
    error: Optional[str] = None


@dataclass(frozen=True)
class RunContext:
    """Runtime identifiers isolated per execution."""

    run_id: str
    host: str
    server_name: str


@dataclass(frozen=True)
class RuntimeOptions:
    """How the run behaves, as opposed to what gets installed."""

    setup_media: str
    setup_media_sha256: Optional[str] = None
    collation_file: Optional[str] = None
    tempdb_data_size_mb: int = 1024
    tempdb_log_size_mb: int = 512
    scripts_dir: Optional[str] = None
    script_manifest: Optional[str] = None
    verify_table: Optional[str] = None
    install_companion: bool = False
    companion_installer: Optional[str] = None
    non_interactive: bool = False
    allocation_unit_policy: str = "fail"
    create_directories: bool = False
    reboot_policy: str = "defer"
    allow_workgroup: bool = False
    strict_config: bool = False
    setup_timeout_minutes: int = 120
    query_timeout: int = 600
    retry_count: int = 3
    retry_backoff_seconds: float = 5.0
    allow_insecure_http: bool = False
    resume: bool = False
    state_file: Optional[str] = None
    dry_run: bool = False

    def __post_init__(self):
        if not self.setup_media:
            raise PreconditionError("An installation medium (--setup-media) is required.")
        if self.install_companion and not self.companion_installer:
            raise PreconditionError("--install-companion requires --companion-installer.")
        if bool(self.scripts_dir) != bool(self.script_manifest):
            raise PreconditionError("--scripts-dir and --script-manifest must be given together.")
        if self.setup_timeout_minutes <= 0:
            raise PreconditionError("--setup-timeout-minutes must be positive.")
        if self.query_timeout <= 0:
            raise PreconditionError("--query-timeout must be positive.")
        if self.retry_count < 0:
            raise PreconditionError("--retry-count must not be negative.")
