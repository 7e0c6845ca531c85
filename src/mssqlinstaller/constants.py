"""Static values shared by MssqlInstaller services."""

SUPPORTED_VERSIONS = ("2016", "2017", "2019", "2022")
EDITIONS = ("Developer", "Standard", "Enterprise")
FREE_EDITIONS = ("Developer",)
DEVELOPER_PRODUCT_KEY = "22222-00000-00000-00000-00000"
PROGRAM_FILES_SQL = r"C:\Program Files\Microsoft SQL Server"

# Release -> internal build number used in install directory names.
VERSION_BUILD_NUMBERS = {
    "2016": 13,
    "2017": 14,
    "2019": 15,
    "2022": 16,
}

DEFAULT_INSTANCE = "MSSQLSERVER"
DEFAULT_COLLATION = "Latin1_General_CI_AS"
DEFAULT_PORT = 1433

# Created by the maintenance scripts; checked when a script manifest ran.
DEFAULT_VERIFY_TABLE = "master.dbo.CommandLog"

REQUIRED_ALLOCATION_UNIT = 65536
MAX_TEMPDB_FILES = 8
MIN_TEMPDB_DATA_SIZE_MB = 512
MIN_TEMPDB_LOG_SIZE_MB = 64

MEDIA_EXTENSIONS = (".iso", ".exe")
DISK_IMAGE_EXTENSION = ".iso"

SETUP_REBOOT_RETURNCODE = 3010

UNINSTALL_REGISTRY_KEYS = (
    r"HKLM:\Software\Microsoft\Windows\CurrentVersion\Uninstall\*",
    r"HKLM:\Software\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall\*",
)
COMPANION_TOOL_PATTERN = "*SQL Server Management Studio*"

HIGH_PERFORMANCE_POWER_PLAN = "8c5e7fda-e8bf-4a96-9a85-a6e23a8c635c"

VERIFY_TABLE_EXISTS = "Table exists"
VERIFY_TABLE_MISSING = "Table does not exist"

SYSTEM_DATABASE_FILES = {
    "master": ("master", "mastlog"),
    "model": ("modeldev", "modellog"),
    "msdb": ("MSDBData", "MSDBLog"),
}

# (job, schedule) rows printed in the final summary.
MAINTENANCE_JOB_CADENCE = (
    ("DatabaseBackup - SYSTEM_DATABASES - FULL", "Daily 21:00"),
    ("DatabaseBackup - USER_DATABASES - FULL", "Sunday 22:00"),
    ("DatabaseBackup - USER_DATABASES - DIFF", "Monday-Saturday 22:00"),
    ("DatabaseBackup - USER_DATABASES - LOG", "Every 15 minutes"),
    ("DatabaseIntegrityCheck - SYSTEM_DATABASES", "Sunday 20:00"),
    ("DatabaseIntegrityCheck - USER_DATABASES", "Saturday 23:00"),
    ("IndexOptimize - USER_DATABASES", "Friday 23:00"),
    ("CommandLog Cleanup", "Sunday 00:00"),
    ("sp_delete_backuphistory", "Sunday 00:00"),
    ("sp_purge_jobhistory", "Sunday 00:00"),
    ("Output File Cleanup", "Sunday 00:00"),
)

SECRET_ENV_VARS = {
    "sa_password": "MSSQLINSTALLER_SA_PASSWORD",
    "engine_password": "MSSQLINSTALLER_ENGINE_PASSWORD",
    "agent_password": "MSSQLINSTALLER_AGENT_PASSWORD",
}

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_REBOOT_REQUIRED = 3
