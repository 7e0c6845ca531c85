"""Run manifest: the operator-facing record of one installation attempt."""

from typing import Any, Dict, List, Optional

from mssqlinstaller.services.jsonfile import elapsed_seconds, utc_now, write_json_atomic


class ManifestService:
    """Writes output/run-manifest.json after every change.

    The manifest carries request metadata, step timings, the engine install
    outcome and each post-install setting. Callers pass metadata only, never
    credentials. Write failures are logged and do not stop the run.
    """

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "installation": {
                "server_name": None,
                "install_state": None,
                "reboot_signal": None,
                "engine_version": None,
            },
            "steps": [],
            "configuration": [],
            "warnings": [],
            "artifacts": {},
            "error": None,
        }

    @property
    def warnings(self) -> List[str]:
        return self.manifest["warnings"]

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.manifest.update(run_id=run_id, status="running", started_at=utc_now(), metadata=metadata)
        self.write()

    def set_installation(self, **values: Optional[str]):
        self.manifest["installation"].update(values)
        self.write()

    def step_started(self, step_name: str, details: Optional[Dict[str, Any]] = None):
        self.manifest["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": utc_now(),
                "finished_at": None,
                "duration_seconds": None,
                "details": dict(details or {}),
                "error": None,
            }
        )
        self.write()

    def step_finished(
        self,
        step_name: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        step = self._open_step(step_name)
        if step is not None:
            finished_at = utc_now()
            step.update(
                status=status,
                finished_at=finished_at,
                duration_seconds=elapsed_seconds(step["started_at"], finished_at),
                error=error,
            )
            step["details"].update(details or {})
        self.write()

    def record_configuration(self, name: str, critical: bool, status: str, error: Optional[str] = None):
        self.manifest["configuration"].append(
            {"name": name, "critical": critical, "status": status, "error": error}
        )
        if status == "failed":
            self.warnings.append(f"{name}: {error}")
        self.write()

    def add_warning(self, message: str):
        self.warnings.append(message)
        self.write()

    def add_artifact(self, key: str, value: str):
        self.manifest["artifacts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        if status == "success" and self.warnings:
            status = "degraded"
        finished_at = utc_now()
        self.manifest.update(
            status=status,
            finished_at=finished_at,
            duration_seconds=elapsed_seconds(self.manifest["started_at"], finished_at),
            error=error,
        )
        self.write()

    def write(self):
        try:
            write_json_atomic(self.manifest_file, self.manifest, prefix="run-manifest-")
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)

    def _open_step(self, step_name: str) -> Optional[Dict[str, Any]]:
        for step in reversed(self.manifest["steps"]):
            if step["name"] == step_name and step["status"] == "running":
                return step
        return None
