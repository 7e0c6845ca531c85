import pytest

from mssqlinstaller.errors import PreconditionError
from mssqlinstaller.services import prompts as prompts_module
from mssqlinstaller.services.prompts import InteractiveDecisionProvider, UnattendedDecisionProvider


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, msg, *args, **_kwargs):
        self.warnings.append(msg % args if args else msg)


class DummyConsole:
    def __init__(self):
        self.messages = []

    def print(self, *args, **_kwargs):
        self.messages.append(" ".join(str(arg) for arg in args))


def test_unattended_defaults_refuse_mismatch_and_defer_restart():
    provider = UnattendedDecisionProvider(logger=DummyLogger(), environ={})

    assert provider.continue_with_allocation_mismatch("D:", 4096, 65536) is False
    assert provider.create_missing_directory("D:\\Data") is False
    assert provider.restart_now() is False


def test_unattended_warn_policy_continues_and_logs():
    logger = DummyLogger()
    provider = UnattendedDecisionProvider(
        logger=logger,
        allocation_unit_policy="warn",
        create_directories=True,
        reboot_policy="restart",
        environ={},
    )

    assert provider.continue_with_allocation_mismatch("D:", 4096, 65536) is True
    assert provider.create_missing_directory("D:\\Data") is True
    assert provider.restart_now() is True
    assert "Volume D: uses 4096 byte allocation units" in logger.warnings[0]


def test_unattended_reads_secrets_from_environment():
    provider = UnattendedDecisionProvider(
        logger=DummyLogger(),
        environ={"MSSQLINSTALLER_SA_PASSWORD": "Str0ng!Passw0rd"},
    )

    assert provider.secret("sa_password", "Password for sa") == "Str0ng!Passw0rd"


def test_unattended_missing_secret_names_the_variable():
    provider = UnattendedDecisionProvider(logger=DummyLogger(), environ={})

    with pytest.raises(PreconditionError, match="MSSQLINSTALLER_AGENT_PASSWORD"):
        provider.secret("agent_password", "Password for the Agent service account")


@pytest.mark.parametrize("kwargs", [{"allocation_unit_policy": "ignore"}, {"reboot_policy": "now"}])
def test_unattended_rejects_unknown_policies(kwargs):
    with pytest.raises(PreconditionError, match="Unknown"):
        UnattendedDecisionProvider(logger=DummyLogger(), environ={}, **kwargs)


def test_interactive_secret_reprompts_until_value(monkeypatch):
    answers = iter(["", "Str0ng!Passw0rd"])
    calls = []

    def fake_ask(prompt, **kwargs):
        calls.append(kwargs)
        return next(answers)

    monkeypatch.setattr(prompts_module.Prompt, "ask", fake_ask)
    console = DummyConsole()
    provider = InteractiveDecisionProvider(console)

    assert provider.secret("sa_password", "Password for sa") == "Str0ng!Passw0rd"
    assert all(call["password"] is True for call in calls)
    assert any("A value is required" in message for message in console.messages)
    assert not any("Str0ng!Passw0rd" in message for message in console.messages)


def test_interactive_confirmations_use_rich_prompt(monkeypatch):
    questions = []

    def fake_confirm(question, **kwargs):
        questions.append((question, kwargs["default"]))
        return True

    monkeypatch.setattr(prompts_module.Confirm, "ask", fake_confirm)
    provider = InteractiveDecisionProvider(DummyConsole())

    assert provider.continue_with_allocation_mismatch("E:", 4096, 65536) is True
    assert provider.create_missing_directory("E:\\Backup") is True
    assert provider.restart_now() is True
    assert questions[1] == ("Directory E:\\Backup does not exist. Create it?", True)
    assert questions[2][1] is False
