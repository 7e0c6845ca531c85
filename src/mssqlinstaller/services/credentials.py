"""Secret collection for service accounts and the sa login."""

from mssqlinstaller.errors import PreconditionError
from mssqlinstaller.models import InstallationRequest, SecretBundle, is_managed_account


class CredentialCollector:
    """Collects the secrets one run needs and registers them for redaction."""

    def __init__(self, decisions, command_runner, logger):
        self.decisions = decisions
        self.command_runner = command_runner
        self.logger = logger

    def collect(self, request: InstallationRequest) -> SecretBundle:
        sa_password = self._ask("sa_password", "Password for the sa login")

        engine_password = None
        if not is_managed_account(request.engine_account):
            engine_password = self._ask(
                "engine_password",
                f"Password for engine service account {request.engine_account}",
            )

        agent_password = None
        if request.shared_service_account:
            agent_password = engine_password
            self.logger.info("Agent runs under the engine account; reusing its password.")
        elif not is_managed_account(request.agent_account):
            agent_password = self._ask(
                "agent_password",
                f"Password for agent service account {request.agent_account}",
            )

        bundle = SecretBundle(
            sa_password=sa_password,
            engine_password=engine_password,
            agent_password=agent_password,
        )
        for value in bundle.values():
            self.command_runner.register_secret(value)

        self.logger.info("Credentials collected (%s secret value(s)).", len(bundle.values()))
        return bundle

    def _ask(self, key: str, prompt: str) -> str:
        value = self.decisions.secret(key, prompt)
        if not value:
            raise PreconditionError(f"{prompt} must not be empty.")
        return value
