import logging
import os
import socket
import traceback
import uuid
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import requests
from rich.console import Console
from rich.table import Table

from .constants import DEFAULT_VERIFY_TABLE, EXIT_FAILURE, EXIT_REBOOT_REQUIRED, EXIT_SUCCESS
from .errors import InstallerError
from .errors_catalog import actionable_error
from .models import (
    ConfigResult,
    InstallationRequest,
    InstallerDescriptor,
    InstallOutcome,
    RunContext,
    RuntimeOptions,
    ScriptEntry,
    SecretBundle,
    TempDbLayout,
)
from .services.command_runner import CommandRunner
from .services.companion_tool import CompanionToolInstaller
from .services.credentials import CredentialCollector
from .services.database import SqlClient
from .services.download import DownloadService
from .services.engine_installer import EngineInstaller
from .services.environment import EnvironmentValidator
from .services.installer_media import InstallerLocator
from .services.manifest import ManifestService
from .services.post_install import PostInstallConfigurator, summarize
from .services.powershell import PowerShellService
from .services.prompts import InteractiveDecisionProvider, UnattendedDecisionProvider
from .services.report import SummaryReporter, setup_log_directory
from .services.script_runner import ScriptRunner
from .services.state import StateService
from .services.validation import ValidationService
from .services.verification import VerificationProbe, parse_table_target

console = Console()
logger = logging.getLogger("mssqlinstaller")


class MssqlInstaller:
    def __init__(
        self,
        request: InstallationRequest,
        options: RuntimeOptions,
        decisions=None,
    ):
        self.request = request
        self.options = options

        self.cwd = os.getcwd()
        self.output_dir = os.path.join(self.cwd, "output")
        self.download_dir = os.path.join(self.output_dir, "downloads")
        self.state_file = options.state_file or os.path.join(self.output_dir, "run-state.json")
        self.manifest_file = os.path.join(self.output_dir, "run-manifest.json")
        self.state_service = StateService(state_file=self.state_file, logger=logger)
        self.manifest_service = ManifestService(manifest_file=self.manifest_file, logger=logger)
        self.state: Optional[Dict[str, Any]] = None
        self.current_step_name: Optional[str] = None

        self.layout = TempDbLayout.for_cores(
            os.cpu_count(),
            data_size_mb=options.tempdb_data_size_mb,
            log_size_mb=options.tempdb_log_size_mb,
        )

        if decisions is None:
            if options.non_interactive:
                decisions = UnattendedDecisionProvider(
                    logger=logger,
                    allocation_unit_policy=options.allocation_unit_policy,
                    create_directories=options.create_directories,
                    reboot_policy=options.reboot_policy,
                )
            else:
                decisions = InteractiveDecisionProvider(console=console)
        self.decisions = decisions

        self.command_runner = CommandRunner(logger=logger)
        self.powershell = PowerShellService(command_runner=self.command_runner, logger=logger)
        self.validation_service = ValidationService(allow_insecure_http=options.allow_insecure_http)
        self.download_service = DownloadService(
            validation_service=self.validation_service,
            logger=logger,
            console=console,
            requests_module=requests,
        )
        self.environment_validator = EnvironmentValidator(
            powershell=self.powershell,
            decisions=self.decisions,
            logger=logger,
            console=console,
        )
        self.credential_collector = CredentialCollector(
            decisions=self.decisions,
            command_runner=self.command_runner,
            logger=logger,
        )
        self.locator = InstallerLocator(powershell=self.powershell, logger=logger, console=console)
        self.engine_installer = EngineInstaller(
            command_runner=self.command_runner,
            logger=logger,
            console=console,
            setup_timeout_seconds=options.setup_timeout_minutes * 60,
        )
        self.sql_client = SqlClient(
            server=request.server_name,
            logger=logger,
            query_timeout=options.query_timeout,
            retry_count=options.retry_count,
            retry_backoff_seconds=options.retry_backoff_seconds,
        )
        self.configurator = PostInstallConfigurator(
            sql_client=self.sql_client,
            powershell=self.powershell,
            command_runner=self.command_runner,
            logger=logger,
            console=console,
            request=request,
            layout=self.layout,
            strict=options.strict_config,
        )
        self.script_runner = ScriptRunner(
            sql_client=self.sql_client,
            scripts_dir=options.scripts_dir or self.cwd,
            logger=logger,
            console=console,
        )
        self.verification_probe = VerificationProbe(sql_client=self.sql_client, logger=logger, console=console)
        self.companion_installer = CompanionToolInstaller(
            powershell=self.powershell,
            command_runner=self.command_runner,
            logger=logger,
            console=console,
        )
        self.reporter = SummaryReporter(console=console)

        self.script_entries: List[ScriptEntry] = []
        self.config_results: List[ConfigResult] = []
        self.companion_status: Optional[str] = None
        self.descriptor: Optional[InstallerDescriptor] = None
        self.run_context = self._build_run_context()

    def _build_run_context(self) -> RunContext:
        return RunContext(
            run_id=uuid.uuid4().hex[:10],
            host=socket.gethostname(),
            server_name=self.request.server_name,
        )

    def _build_manifest_metadata(self) -> Dict[str, Any]:
        metadata = self.request.resume_metadata()
        metadata.update(
            {
                "engine_account": self.request.engine_account,
                "agent_account": self.request.agent_account,
                "setup_media": self.options.setup_media,
                "script_manifest": self.options.script_manifest,
                "tempdb_file_count": self.layout.file_count,
                "install_companion": self.options.install_companion,
                "strict_config": self.options.strict_config,
                "non_interactive": self.options.non_interactive,
                "resume_enabled": self.options.resume,
                "dry_run": self.options.dry_run,
            }
        )
        return metadata

    def _initialize_state(self) -> bool:
        if self.options.dry_run:
            return False

        state, resumed = self.state_service.initialize(
            metadata=self.request.resume_metadata(),
            run_context=asdict(self.run_context),
            resume=self.options.resume,
        )
        self.state = state

        if resumed:
            context_data = state.get("run_context")
            if not isinstance(context_data, dict):
                raise InstallerError("State file is missing run context. Start a fresh run without --resume.")
            self.run_context = RunContext(**context_data)
            logger.info(
                "Resuming previous run '%s' (install state: %s).",
                self.run_context.run_id,
                self.state_service.get_install_state(state) or "<none>",
            )
            if state.get("status") == "success":
                raise InstallerError(
                    "The state file already belongs to a successful run. Remove it or choose another --state-file."
                )
            self.state_service.mark_resumed(state)
        else:
            logger.info("Run state written to %s", self.state_file)

        return resumed

    def _run_step(
        self,
        name: str,
        callback,
        *args,
        skip_when_completed: bool = True,
        **kwargs,
    ):
        if self.state and skip_when_completed and self.state_service.is_step_completed(self.state, name):
            logger.info("Skipping completed step from state: %s", name)
            self.manifest_service.step_started(name, details={"resumed": True})
            self.manifest_service.step_finished(name, "skipped", details={"resumed": True})
            return None, True

        if self.state:
            self.state_service.mark_step_started(self.state, name)
        self.manifest_service.step_started(name)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            error = self.command_runner.redact(str(exc))
            if self.state:
                self.state_service.mark_step_failed(self.state, name, error)
            self.manifest_service.step_finished(name, "failed", error=error)
            raise

        if self.state:
            self.state_service.mark_step_completed(self.state, name)
        self.manifest_service.step_finished(name, "success")
        self.current_step_name = None
        return result, False

    def validate_inputs(self):
        console.print("[blue]Validating inputs...[/blue]")
        self.validation_service.validate_media_location(
            self.options.setup_media,
            "Installation media",
            logger,
            console,
        )
        if self.options.install_companion:
            self.validation_service.validate_media_location(
                self.options.companion_installer,
                "Management Studio installer",
                logger,
                console,
                extensions=(".exe",),
            )

        if self.validation_service.validate_collation(self.request.collation, self.options.collation_file):
            logger.info("Collation %s is allowed.", self.request.collation)
        else:
            logger.warning("No collation allow-list given. Using the default collation %s.", self.request.collation)

    def check_host(self):
        self.environment_validator.check_privileges()
        self.environment_validator.check_domain_membership(allow_workgroup=self.options.allow_workgroup)

    def validate_volumes(self) -> Dict[str, int]:
        block_sizes = self.environment_validator.validate_volumes(
            self.request.storage_paths(),
            dry_run=self.options.dry_run,
        )
        expected = self.environment_validator.required_allocation_unit
        for drive, block_size in block_sizes.items():
            if block_size != expected:
                self.manifest_service.add_warning(
                    f"Volume {drive} uses {block_size} byte allocation units (expected {expected})."
                )
        return block_sizes

    def validate_script_manifest(self) -> int:
        if not self.options.script_manifest:
            logger.info("No script manifest given. Script execution will be skipped.")
            return 0
        self.script_entries = self.script_runner.load(self.options.script_manifest)
        return len(self.script_entries)

    def print_plan(self):
        table = Table(title="Installation plan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        request = self.request
        table.add_row("Instance", f"{request.instance_name} ({request.server_name})")
        table.add_row("Release", f"SQL Server {request.version} {request.edition}")
        table.add_row("Collation", request.collation)
        table.add_row("TCP port", str(request.port))
        table.add_row("Engine account", request.engine_account)
        table.add_row("Agent account", request.agent_account)
        for label, path in request.storage_paths().items():
            table.add_row(f"Directory ({label})", path)
        table.add_row(
            "tempdb",
            f"{self.layout.file_count} x {self.layout.data_size_mb} MB data, {self.layout.log_size_mb} MB log",
        )
        table.add_row("Scripts", ", ".join(entry.file_name for entry in self.script_entries) or "-")
        table.add_row("Management Studio", "yes" if self.options.install_companion else "no")
        console.print(table)
        for operation in self.configurator.operations():
            kind = "critical" if operation.critical else "advisory"
            console.print(f"  - {operation.name} ({kind})")

    def collect_credentials(self) -> SecretBundle:
        return self.credential_collector.collect(self.request)

    def fetch_installer(self) -> str:
        return self.download_service.fetch(
            self.options.setup_media,
            self.download_dir,
            "Installation media",
            expected_sha256=self.options.setup_media_sha256,
        )

    def locate_installer(self, media_path: str) -> InstallerDescriptor:
        self.descriptor = self.locator.locate(media_path)
        return self.descriptor

    def install_engine(self, descriptor: InstallerDescriptor, secrets: SecretBundle) -> InstallOutcome:
        configuration = self.engine_installer.build_configuration(self.request, self.layout, secrets)
        outcome = self.engine_installer.install(descriptor, configuration, self.request, self.output_dir)
        if self.state:
            self.state_service.set_install_state(self.state, outcome.state.value)
        self.manifest_service.set_installation(
            server_name=self.request.server_name,
            install_state=outcome.state.value,
            reboot_signal=outcome.signal.value,
        )
        self.manifest_service.add_artifact(
            "configuration_file",
            os.path.join(self.output_dir, EngineInstaller.CONFIGURATION_FILE),
        )
        return outcome

    def release_installer(self):
        if self.descriptor is not None:
            self.locator.release(self.descriptor)
            self.descriptor = None

    def configure_engine(self) -> List[ConfigResult]:
        self.config_results = self.configurator.run()
        for result in self.config_results:
            self.manifest_service.record_configuration(result.name, result.critical, result.status, result.error)
        failed = summarize(self.config_results)
        if failed:
            logger.warning("Advisory settings not applied: %s", failed)
        if self.state:
            self.state_service.set_value(self.state, "config_results", [asdict(result) for result in self.config_results])
        return self.config_results

    def run_scripts(self) -> List[str]:
        return self.script_runner.run(self.script_entries)

    def verify_installation(self):
        engine_version = self.verification_probe.verify_engine_version(self.request.build_number)
        self.manifest_service.set_installation(engine_version=engine_version)
        target = self.options.verify_table
        if not target and self.script_entries:
            target = DEFAULT_VERIFY_TABLE
        if not target:
            logger.info("No scripts ran and no verification table given. Table check skipped.")
            return
        database, schema, table = parse_table_target(target)
        self.verification_probe.verify_table(database, schema, table)

    def install_companion_tool(self) -> str:
        self.companion_status = self.companion_installer.ensure_installed(
            lambda: self.download_service.fetch(
                self.options.companion_installer,
                self.download_dir,
                "Management Studio installer",
            )
        )
        if self.state:
            self.state_service.set_value(self.state, "companion_status", self.companion_status)
        return self.companion_status

    def restart_services(self):
        console.print("[blue]Restarting SQL Server services...[/blue]")
        self.powershell.restart_sql_services(self.request.engine_service, self.request.agent_service)
        self.sql_client.scalar("SELECT 1;")
        console.print("[green]SQL Server services restarted.[/green]")

    def report(self):
        self.reporter.render(
            self.request,
            config_results=self.config_results,
            companion_status=self.companion_status,
            manifest_file=self.manifest_file,
        )

    def _restore_progress(self):
        """Reload results of steps skipped on resume."""
        if not self.state:
            return
        self.config_results = [
            ConfigResult(**item) for item in self.state_service.get_value(self.state, "config_results", [])
        ]
        self.companion_status = self.state_service.get_value(self.state, "companion_status")

    def handle_reboot(self) -> bool:
        """Report the pending restart and return whether to restart now."""
        message = actionable_error("reboot_required")
        console.print(f"[bold yellow]{message}[/bold yellow]")
        logger.warning(message)
        if self.state:
            self.state_service.mark_status(self.state, "needs_reboot", "Restart required after setup.")
        return self.decisions.restart_now()

    def run(self) -> int:
        exit_code = EXIT_FAILURE
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        restart_now = False

        try:
            logger.info("Starting MssqlInstaller...")

            resumed = self._initialize_state()
            self.manifest_service.start_run(
                run_id=self.run_context.run_id,
                metadata=self._build_manifest_metadata(),
            )
            self.manifest_service.add_artifact("setup_log_directory", setup_log_directory(self.request.version))

            self._run_step("validate_inputs", self.validate_inputs, skip_when_completed=False)
            self._run_step("check_host", self.check_host, skip_when_completed=False)
            self._run_step("validate_volumes", self.validate_volumes, skip_when_completed=False)
            self._run_step("validate_script_manifest", self.validate_script_manifest, skip_when_completed=False)

            if self.options.dry_run:
                self.print_plan()
                console.print("[green]Dry run complete. Nothing was installed.[/green]")
                manifest_status = "dry_run"
                exit_code = EXIT_SUCCESS
                return exit_code

            if resumed:
                self._restore_progress()

            if self.state and self.state_service.is_step_completed(self.state, "install_engine"):
                logger.info("SQL Server was installed by the resumed run. Continuing after setup.")
            else:
                secrets, _ = self._run_step("collect_credentials", self.collect_credentials, skip_when_completed=False)
                media_path, _ = self._run_step("fetch_installer", self.fetch_installer, skip_when_completed=False)
                try:
                    descriptor, _ = self._run_step(
                        "locate_installer",
                        self.locate_installer,
                        media_path,
                        skip_when_completed=False,
                    )
                    outcome, _ = self._run_step("install_engine", self.install_engine, descriptor, secrets)
                finally:
                    self.release_installer()

                if outcome.needs_reboot:
                    restart_now = self.handle_reboot()
                    manifest_status = "needs_reboot"
                    manifest_error = "Restart required after setup."
                    exit_code = EXIT_REBOOT_REQUIRED
                    return exit_code

            self._run_step("configure_engine", self.configure_engine)
            if self.script_entries:
                self._run_step("run_scripts", self.run_scripts)
            self._run_step("verify_installation", self.verify_installation)
            if self.options.install_companion:
                self._run_step("install_companion_tool", self.install_companion_tool)
            self._run_step("restart_services", self.restart_services)
            self._run_step("report", self.report, skip_when_completed=False)

            if self.state:
                self.state_service.mark_status(self.state, "success")
            manifest_status = "success"
            manifest_error = None
            exit_code = EXIT_SUCCESS
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            if self.state:
                self.state_service.mark_status(self.state, "aborted", "Operation cancelled by user.")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            exit_code = EXIT_FAILURE
            return exit_code
        except InstallerError as exc:
            message = self.command_runner.redact(str(exc))
            console.print(f"[bold red]Error:[/bold red] {message}")
            logger.error(message)
            if self.state:
                failed_step = self.current_step_name or "run"
                self.state_service.mark_step_failed(self.state, failed_step, message)
                self.state_service.mark_status(self.state, "failed", message)
            manifest_status = "failed"
            manifest_error = message
            exit_code = EXIT_FAILURE
            return exit_code
        except Exception as exc:
            message = self.command_runner.redact(str(exc))
            console.print(f"[bold red]Unexpected error:[/bold red] {message}")
            logger.error("Unexpected error: %s", message)
            logger.debug(self.command_runner.redact(traceback.format_exc()))
            if self.state:
                failed_step = self.current_step_name or "run"
                self.state_service.mark_step_failed(self.state, failed_step, message)
                self.state_service.mark_status(self.state, "failed", message)
            manifest_status = "failed"
            manifest_error = message
            exit_code = EXIT_FAILURE
            return exit_code
        finally:
            self.release_installer()
            self.manifest_service.finalize(manifest_status, error=manifest_error)
            if restart_now:
                logger.warning("Restarting the computer. Run again with --resume afterwards.")
                try:
                    self.powershell.restart_computer()
                except InstallerError as exc:
                    logger.error("Could not restart the computer: %s", exc)
                    console.print("[bold red]Restart failed. Restart the computer manually.[/bold red]")
