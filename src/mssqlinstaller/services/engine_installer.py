"""SQL Server setup invocation and result interpretation."""

import os
import re
from typing import Optional

from mssqlinstaller.constants import DEVELOPER_PRODUCT_KEY, SETUP_REBOOT_RETURNCODE
from mssqlinstaller.errors import ExternalProcessError
from mssqlinstaller.errors_catalog import actionable_error
from mssqlinstaller.models import (
    InstallationRequest,
    InstallerDescriptor,
    InstallOutcome,
    InstallState,
    RebootSignal,
    SecretBundle,
    SetupConfiguration,
    TempDbLayout,
)
from mssqlinstaller.services.report import setup_log_directory


class EngineInstaller:
    """Builds the setup configuration, runs setup and classifies the outcome."""

    CONFIGURATION_FILE = "ConfigurationFile.ini"
    NEGATIVE_REBOOT_PATTERN = re.compile(
        r"(no reboot|reboot (is )?not required|reboot required\s*:\s*(false|no))"
    )
    PENDING_RESTART_PATTERN = re.compile(r"restart.*(pending|required)|(pending|required).*restart")

    def __init__(self, command_runner, logger, console, setup_timeout_seconds: Optional[float] = 7200):
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.setup_timeout_seconds = setup_timeout_seconds

    def build_configuration(
        self,
        request: InstallationRequest,
        layout: TempDbLayout,
        secrets: SecretBundle,
    ) -> SetupConfiguration:
        options = {
            "ACTION": "Install",
            "FEATURES": ",".join(request.features),
            "INSTANCENAME": request.instance_name,
            "INSTANCEID": request.instance_name,
            "SQLCOLLATION": request.collation,
            "SECURITYMODE": "SQL",
            "SQLSYSADMINACCOUNTS": tuple(request.admin_accounts),
            "SQLSVCACCOUNT": request.engine_account,
            "SQLSVCSTARTUPTYPE": "Automatic",
            "AGTSVCACCOUNT": request.agent_account,
            "AGTSVCSTARTUPTYPE": "Automatic",
            "BROWSERSVCSTARTUPTYPE": "Disabled" if request.is_default_instance else "Automatic",
            "SQLUSERDBDIR": request.data_dir,
            "SQLUSERDBLOGDIR": request.log_dir,
            "SQLBACKUPDIR": request.backup_dir,
            "SQLTEMPDBDIR": request.tempdb_data_dir,
            "SQLTEMPDBLOGDIR": request.tempdb_log_dir,
            "SQLTEMPDBFILECOUNT": str(layout.file_count),
            "SQLTEMPDBFILESIZE": str(layout.data_size_mb),
            "SQLTEMPDBFILEGROWTH": str(layout.data_growth_mb),
            "SQLTEMPDBLOGFILESIZE": str(layout.log_size_mb),
            "SQLTEMPDBLOGFILEGROWTH": str(layout.log_growth_mb),
            "TCPENABLED": "1",
            "NPENABLED": "0",
            "SQLTELSVCSTARTUPTYPE": "Disabled",
            "IACCEPTSQLSERVERLICENSETERMS": "True",
            "INDICATEPROGRESS": "False",
        }
        if request.update_source:
            options["UPDATEENABLED"] = "True"
            options["UPDATESOURCE"] = request.update_source
        else:
            options["UPDATEENABLED"] = "False"

        engine, agent = secrets.credentials(request)[1:]
        secret_options = {"SAPWD": secrets.sa_password}
        if engine.password:
            secret_options["SQLSVCPASSWORD"] = engine.password
        if agent.password:
            secret_options["AGTSVCPASSWORD"] = agent.password

        product_key = request.product_key or DEVELOPER_PRODUCT_KEY
        secret_options["PID"] = product_key
        self.command_runner.register_secret(request.product_key)

        return SetupConfiguration(options=options, secret_options=secret_options)

    def write_configuration_file(self, configuration: SetupConfiguration, work_dir: str) -> str:
        os.makedirs(work_dir, exist_ok=True)
        path = os.path.join(work_dir, self.CONFIGURATION_FILE)
        with open(path, "w", encoding="utf-8", newline="\r\n") as file_obj:
            file_obj.write(configuration.to_ini())
        return path

    def install(
        self,
        descriptor: InstallerDescriptor,
        configuration: SetupConfiguration,
        request: InstallationRequest,
        work_dir: str,
    ) -> InstallOutcome:
        self.console.print(
            f"[blue]Installing SQL Server {request.version} {request.edition} "
            f"({request.instance_name})...[/blue]"
        )
        config_path = self.write_configuration_file(configuration, work_dir)
        self.logger.info("Setup configuration written to %s", config_path)
        self.logger.info("State: %s", InstallState.INSTALLING.value)

        cmd = [
            descriptor.setup_path,
            "/Q",
            f"/CONFIGURATIONFILE={config_path}",
        ] + configuration.secret_arguments()

        result = self.command_runner.run(
            cmd,
            check=False,
            capture_output=True,
            timeout=self.setup_timeout_seconds,
            accept_returncodes=[SETUP_REBOOT_RETURNCODE],
        )

        stdout = result.stdout or ""
        stderr = result.stderr or ""
        if result.returncode not in (0, SETUP_REBOOT_RETURNCODE):
            message = actionable_error(
                "setup_failed",
                returncode=str(result.returncode),
                log_dir=setup_log_directory(request.version),
            )
            details = (stderr or stdout).strip()
            if details:
                message = f"{message}\n{details[-2000:]}"
            raise ExternalProcessError(message)

        signal = self.classify_reboot(result.returncode, stdout, stderr)
        state = InstallState.INSTALLED if signal == RebootSignal.NO_REBOOT else InstallState.NEEDS_REBOOT
        self.logger.info("State: %s (reboot signal: %s)", state.value, signal.value)
        if state == InstallState.INSTALLED:
            self.console.print("[green]SQL Server installed.[/green]")
        else:
            self.console.print("[yellow]SQL Server installed but a restart is required.[/yellow]")

        return InstallOutcome(
            returncode=result.returncode,
            signal=signal,
            state=state,
            stdout=stdout,
            stderr=stderr,
        )

    def classify_reboot(self, returncode: int, stdout: str, stderr: str) -> RebootSignal:
        if returncode == SETUP_REBOOT_RETURNCODE:
            return RebootSignal.REBOOT_REQUIRED

        pending = False
        for line in f"{stdout}\n{stderr}".lower().splitlines():
            if "reboot" in line:
                if self.NEGATIVE_REBOOT_PATTERN.search(line):
                    continue
                return RebootSignal.REBOOT_REQUIRED
            if self.PENDING_RESTART_PATTERN.search(line):
                pending = True

        return RebootSignal.UNKNOWN if pending else RebootSignal.NO_REBOOT
