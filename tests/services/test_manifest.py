import json

from mssqlinstaller.services.manifest import ManifestService


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


def test_manifest_service_writes_run_metadata(tmp_path):
    manifest_file = tmp_path / "run-manifest.json"
    service = ManifestService(str(manifest_file), logger=DummyLogger())

    service.start_run("run-123", {"instance_name": "MSSQLSERVER", "version": "2022"})
    service.set_installation(server_name="localhost", install_state="installed")
    service.step_started("install_engine")
    service.step_finished("install_engine", "success")
    service.add_artifact("setup_log_directory", r"C:\Program Files\Microsoft SQL Server\160\Setup Bootstrap\Log")
    service.finalize("success")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))

    assert data["run_id"] == "run-123"
    assert data["status"] == "success"
    assert data["installation"]["install_state"] == "installed"
    assert data["artifacts"]["setup_log_directory"].endswith("Log")
    assert data["steps"][0]["name"] == "install_engine"
    assert data["steps"][0]["status"] == "success"


def test_manifest_marks_successful_run_with_advisory_failures_as_degraded(tmp_path):
    manifest_file = tmp_path / "run-manifest.json"
    service = ManifestService(str(manifest_file), logger=DummyLogger())

    service.start_run("run-456", {})
    service.record_configuration("cost_threshold_for_parallelism", False, "success")
    service.record_configuration("power_plan", False, "failed", "powercfg not available")
    service.finalize("success")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))

    assert data["status"] == "degraded"
    assert data["warnings"] == ["power_plan: powercfg not available"]
    assert [item["name"] for item in data["configuration"]] == [
        "cost_threshold_for_parallelism",
        "power_plan",
    ]


def test_manifest_keeps_failure_status(tmp_path):
    manifest_file = tmp_path / "run-manifest.json"
    service = ManifestService(str(manifest_file), logger=DummyLogger())

    service.start_run("run-789", {})
    service.add_warning("something advisory")
    service.finalize("failed", error="setup exited with code 1")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))

    assert data["status"] == "failed"
    assert data["error"] == "setup exited with code 1"
