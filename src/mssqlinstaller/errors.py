"""Domain errors for MssqlInstaller."""


class InstallerError(RuntimeError):
    """Raised when the installation cannot continue safely."""


class PreconditionError(InstallerError):
    """The host or the requested configuration is not fit for installation."""


class ResourceError(InstallerError):
    """Installation media could not be found, downloaded or mounted."""


class ExternalProcessError(InstallerError):
    """An external installer process failed or exited unexpectedly."""


class ConfigurationStepError(InstallerError):
    """A post-install setting was rejected by the engine."""


class ScriptExecutionError(InstallerError):
    """A manifest script is missing or failed against the engine."""


class VerificationError(InstallerError):
    """The installation sanity check did not return the expected sentinel."""
