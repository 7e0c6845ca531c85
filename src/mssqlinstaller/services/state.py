"""Run state that survives the restart SQL Server setup may ask for."""

import json
import os
from typing import Any, Dict, Optional, Tuple

from mssqlinstaller.constants import SECRET_ENV_VARS
from mssqlinstaller.errors import InstallerError
from mssqlinstaller.services.jsonfile import utc_now, write_json_atomic


class StateService:
    """Records step progress and the engine install state of one run.

    A resumed run must describe the same instance, so the request fields in
    RESUME_KEYS are compared before any completed step is skipped. Secrets are
    not part of the state; a resumed run past the install step needs none.
    """

    SCHEMA_VERSION = 1
    RESUME_KEYS = (
        "instance_name",
        "version",
        "edition",
        "collation",
        "port",
        "storage_paths",
    )

    def __init__(self, state_file: str, logger):
        self.state_file = state_file
        self.logger = logger

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.state_file):
            return None

        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise InstallerError(f"Could not read state file '{self.state_file}': {exc}") from exc

        if not isinstance(data, dict) or "completed_steps" not in data:
            raise InstallerError(f"State file '{self.state_file}' is not a MssqlInstaller run state.")
        return data

    def save(self, state: Dict[str, Any]):
        state["schema_version"] = self.SCHEMA_VERSION
        state["updated_at"] = utc_now()
        try:
            write_json_atomic(self.state_file, state, prefix="run-state-")
        except OSError as exc:
            raise InstallerError(f"Could not write state file '{self.state_file}': {exc}") from exc

    def initialize(
        self,
        metadata: Dict[str, Any],
        run_context: Dict[str, Any],
        resume: bool,
    ) -> Tuple[Dict[str, Any], bool]:
        """Return the state to work with and whether it continues an earlier run."""
        if resume:
            existing = self.load()
            if existing:
                self._check_same_request(existing, metadata)
                return existing, True
            self.logger.warning("No state file found at %s. Starting a fresh run.", self.state_file)

        now = utc_now()
        state = {
            "schema_version": self.SCHEMA_VERSION,
            "created_at": now,
            "updated_at": now,
            "status": "running",
            "metadata": metadata,
            "run_context": run_context,
            "install_state": None,
            "completed_steps": [],
            "current_step": None,
            "steps": [],
            "data": {},
            "resume_count": 0,
            "last_error": None,
        }
        self.save(state)
        return state, False

    def mark_resumed(self, state: Dict[str, Any]):
        state["resume_count"] = state.get("resume_count", 0) + 1
        state["status"] = "running"
        state["last_error"] = None
        self.save(state)

    def mark_step_started(self, state: Dict[str, Any], step_name: str):
        state["current_step"] = step_name
        state["steps"].append({"name": step_name, "status": "running", "started_at": utc_now()})
        self.save(state)

    def mark_step_completed(self, state: Dict[str, Any], step_name: str):
        self._close_step(state, step_name, "success")
        if step_name not in state["completed_steps"]:
            state["completed_steps"].append(step_name)
        state["current_step"] = None
        self.save(state)

    def mark_step_failed(self, state: Dict[str, Any], step_name: str, error: str):
        self._close_step(state, step_name, "failed", error)
        state["status"] = "failed"
        state["last_error"] = error
        self.save(state)

    def mark_status(self, state: Dict[str, Any], status: str, error: Optional[str] = None):
        state["status"] = status
        if error:
            state["last_error"] = error
        self.save(state)

    def is_step_completed(self, state: Dict[str, Any], step_name: str) -> bool:
        return step_name in state.get("completed_steps", [])

    def set_install_state(self, state: Dict[str, Any], install_state: str):
        state["install_state"] = install_state
        self.save(state)

    def get_install_state(self, state: Dict[str, Any]) -> Optional[str]:
        return state.get("install_state")

    def set_value(self, state: Dict[str, Any], key: str, value: Any):
        if key in SECRET_ENV_VARS:
            raise InstallerError(f"Refusing to persist secret value '{key}' in the run state.")
        state.setdefault("data", {})[key] = value
        self.save(state)

    def get_value(self, state: Dict[str, Any], key: str, default: Any = None) -> Any:
        return state.get("data", {}).get(key, default)

    def _check_same_request(self, state: Dict[str, Any], metadata: Dict[str, Any]):
        previous = state.get("metadata", {})
        mismatches = [key for key in self.RESUME_KEYS if previous.get(key) != metadata.get(key)]
        if mismatches:
            raise InstallerError(
                "Cannot resume run with different inputs. "
                f"Mismatched fields: {', '.join(mismatches)}."
            )

    @staticmethod
    def _close_step(state: Dict[str, Any], step_name: str, status: str, error: Optional[str] = None):
        # only the open record of the step is closed; history of earlier attempts stays
        for step in reversed(state.get("steps", [])):
            if step.get("name") == step_name and step.get("status") == "running":
                step.update(status=status, finished_at=utc_now(), error=error)
                return
