import pytest

from mssqlinstaller.constants import EDITIONS, FREE_EDITIONS
from mssqlinstaller.errors import PreconditionError
from mssqlinstaller.models import (
    InstallationRequest,
    RuntimeOptions,
    SecretBundle,
    SetupConfiguration,
    TempDbLayout,
    is_managed_account,
    tempdb_file_count,
)


def build_request(**overrides):
    values = {
        "instance_name": "MSSQLSERVER",
        "version": "2022",
        "edition": "Developer",
        "data_dir": "D:\\Data",
        "log_dir": "L:\\Logs",
        "backup_dir": "B:\\Backup",
        "tempdb_data_dir": "T:\\TempDB",
        "tempdb_log_dir": "T:\\TempDBLog",
    }
    values.update(overrides)
    return InstallationRequest(**values)


@pytest.mark.parametrize("edition", [edition for edition in EDITIONS if edition not in FREE_EDITIONS])
def test_licensed_editions_require_product_key(edition):
    with pytest.raises(PreconditionError, match="product key is required"):
        build_request(edition=edition)

    assert build_request(edition=edition, product_key="AAAAA-BBBBB-CCCCC-DDDDD-EEEEE").edition == edition


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"version": "2014"}, "Invalid SQL Server version"),
        ({"edition": "Express"}, "Invalid edition"),
        ({"port": 0}, "Invalid TCP port"),
        ({"port": 70000}, "Invalid TCP port"),
        ({"instance_name": "  "}, "must not be empty"),
        ({"admin_accounts": ()}, "sysadmin"),
    ],
)
def test_invalid_requests_are_rejected(overrides, message):
    with pytest.raises(PreconditionError, match=message):
        build_request(**overrides)


def test_default_instance_names_and_services():
    request = build_request()

    assert request.server_name == "localhost"
    assert request.instance_id == "MSSQL16.MSSQLSERVER"
    assert request.engine_service == "MSSQLSERVER"
    assert request.agent_service == "SQLSERVERAGENT"
    assert request.engine_account == "NT Service\\MSSQLSERVER"
    assert request.agent_account == "NT Service\\SQLSERVERAGENT"
    assert request.shared_service_account is False


def test_named_instance_names_and_services():
    request = build_request(instance_name="SqlProd", version="2019")

    assert request.server_name == "localhost\\SqlProd"
    assert request.instance_id == "MSSQL15.SQLPROD"
    assert request.engine_service == "MSSQL$SqlProd"
    assert request.agent_service == "SQLAgent$SqlProd"
    assert request.engine_account == "NT Service\\MSSQL$SqlProd"


def test_shared_service_account_is_case_insensitive():
    request = build_request(engine_account="CONTOSO\\svc-sql", agent_account="contoso\\SVC-SQL")

    assert request.shared_service_account is True


@pytest.mark.parametrize(
    "account,managed",
    [
        ("NT Service\\MSSQLSERVER", True),
        ("NT AUTHORITY\\NETWORK SERVICE", True),
        ("CONTOSO\\gmsa-sql$", True),
        ("CONTOSO\\svc-sql", False),
    ],
)
def test_managed_accounts_have_no_password(account, managed):
    assert is_managed_account(account) is managed


@pytest.mark.parametrize("cores,expected", [(None, 1), (1, 1), (4, 4), (8, 8), (64, 8)])
def test_tempdb_file_count_is_capped_at_eight(cores, expected):
    assert tempdb_file_count(cores) == expected
    assert TempDbLayout.for_cores(cores, 1024, 512).file_count == expected


def test_tempdb_layout_enforces_minimum_sizes():
    with pytest.raises(PreconditionError, match="at least 512 MB"):
        TempDbLayout(file_count=4, data_size_mb=256, log_size_mb=512)
    with pytest.raises(PreconditionError, match="at least 64 MB"):
        TempDbLayout(file_count=4, data_size_mb=1024, log_size_mb=32)


def test_setup_configuration_keeps_secrets_out_of_ini():
    configuration = SetupConfiguration(
        options={"INSTANCENAME": "MSSQLSERVER", "SQLSYSADMINACCOUNTS": ("BUILTIN\\Administrators",)},
        secret_options={"SAPWD": "Str0ng!Passw0rd"},
    )

    ini = configuration.to_ini()

    assert 'SQLSYSADMINACCOUNTS="BUILTIN\\Administrators"' in ini
    assert "Str0ng!Passw0rd" not in ini
    assert "Str0ng!Passw0rd" not in repr(configuration)
    assert configuration.secret_arguments() == ["/SAPWD=Str0ng!Passw0rd"]


def test_secret_bundle_repr_hides_values():
    bundle = SecretBundle(sa_password="Str0ng!Passw0rd", engine_password="Engine-Secret-2")

    assert "Str0ng!Passw0rd" not in repr(bundle)
    assert bundle.values() == ["Str0ng!Passw0rd", "Engine-Secret-2"]


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"setup_media": ""}, "installation medium"),
        ({"install_companion": True}, "--companion-installer"),
        ({"scripts_dir": "C:\\Scripts"}, "given together"),
        ({"setup_timeout_minutes": 0}, "must be positive"),
        ({"retry_count": -1}, "must not be negative"),
    ],
)
def test_runtime_options_validation(overrides, message):
    values = {"setup_media": "C:\\Media\\SQLServer2022.iso"}
    values.update(overrides)

    with pytest.raises(PreconditionError, match=message):
        RuntimeOptions(**values)
