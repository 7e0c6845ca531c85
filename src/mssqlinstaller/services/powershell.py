"""PowerShell bridge for the Windows facilities MssqlInstaller relies on."""

from typing import List, Optional

from mssqlinstaller.errors import ExternalProcessError


def quote(value: str) -> str:
    """Quote a value as a single-quoted PowerShell literal."""
    return "'" + value.replace("'", "''") + "'"


class PowerShellService:
    """Runs PowerShell snippets through the command runner."""

    EXECUTABLE = "powershell.exe"

    def __init__(self, command_runner, logger, timeout: Optional[float] = 300.0):
        self.command_runner = command_runner
        self.logger = logger
        self.timeout = timeout

    def build_command(self, script: str) -> List[str]:
        return [
            self.EXECUTABLE,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            "$ErrorActionPreference = 'Stop'; " + script,
        ]

    def run(self, script: str, check: bool = True, timeout: Optional[float] = None) -> str:
        result = self.command_runner.run(
            self.build_command(script),
            check=check,
            capture_output=True,
            timeout=timeout if timeout is not None else self.timeout,
        )
        return (result.stdout or "").strip()

    def run_bool(self, script: str) -> bool:
        output = self.run(script)
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if not lines:
            raise ExternalProcessError(f"PowerShell returned no value for: {script}")
        return lines[-1].lower() == "true"

    def is_elevated(self) -> bool:
        return self.run_bool(
            "([Security.Principal.WindowsPrincipal]"
            "[Security.Principal.WindowsIdentity]::GetCurrent())"
            ".IsInRole([Security.Principal.WindowsBuiltInRole]::Administrator)"
        )

    def is_domain_member(self) -> bool:
        return self.run_bool("(Get-CimInstance -ClassName Win32_ComputerSystem).PartOfDomain")

    def volume_block_size(self, drive: str) -> Optional[int]:
        drive_letter = drive.rstrip("\\").rstrip(":") + ":"
        output = self.run(
            "(Get-CimInstance -ClassName Win32_Volume "
            f"-Filter \"DriveLetter = '{drive_letter}'\").BlockSize"
        )
        try:
            return int(output.splitlines()[-1].strip())
        except (IndexError, ValueError):
            return None

    def mount_disk_image(self, image_path: str) -> str:
        output = self.run(
            f"$image = Mount-DiskImage -ImagePath {quote(image_path)} "
            "-StorageType ISO -Access ReadOnly -PassThru; "
            "($image | Get-Volume).DriveLetter"
        )
        letters = [line.strip() for line in output.splitlines() if line.strip()]
        if not letters:
            raise ExternalProcessError(f"Mounted {image_path} but no drive letter was assigned.")
        return letters[-1]

    def dismount_disk_image(self, image_path: str):
        self.run(f"Dismount-DiskImage -ImagePath {quote(image_path)} | Out-Null")

    def registry_display_names(self, registry_keys, pattern: str) -> List[str]:
        keys = ", ".join(quote(key) for key in registry_keys)
        output = self.run(
            f"Get-ItemProperty -Path {keys} -ErrorAction SilentlyContinue | "
            f"Where-Object {{ $_.DisplayName -like {quote(pattern)} }} | "
            "ForEach-Object { $_.DisplayName }"
        )
        return [line.strip() for line in output.splitlines() if line.strip()]

    def set_tcp_port(self, instance_id: str, port: int):
        key = (
            "HKLM:\\SOFTWARE\\Microsoft\\Microsoft SQL Server\\"
            f"{instance_id}\\MSSQLServer\\SuperSocketNetLib\\Tcp\\IPAll"
        )
        self.run(
            f"Set-ItemProperty -Path {quote(key)} -Name TcpPort -Value {quote(str(port))}; "
            f"Set-ItemProperty -Path {quote(key)} -Name TcpDynamicPorts -Value ''"
        )

    def add_startup_parameter(self, instance_id: str, parameter: str):
        key = (
            "HKLM:\\SOFTWARE\\Microsoft\\Microsoft SQL Server\\"
            f"{instance_id}\\MSSQLServer\\Parameters"
        )
        self.run(
            f"$key = {quote(key)}; "
            "$existing = @((Get-ItemProperty -Path $key).PSObject.Properties | "
            "Where-Object { $_.Name -like 'SQLArg*' }); "
            f"if (-not ($existing | Where-Object {{ $_.Value -eq {quote(parameter)} }})) {{ "
            f"Set-ItemProperty -Path $key -Name ('SQLArg' + $existing.Count) -Value {quote(parameter)} }}"
        )

    def restart_service(self, service_name: str):
        self.run(f"Restart-Service -Name {quote(service_name)} -Force")

    def start_service(self, service_name: str):
        self.run(f"Start-Service -Name {quote(service_name)}")

    def restart_sql_services(self, engine_service: str, agent_service: str):
        """Restart the engine (which stops its agent) and bring the agent back."""
        self.restart_service(engine_service)
        self.start_service(agent_service)

    def restart_computer(self):
        self.run("Restart-Computer -Force")
