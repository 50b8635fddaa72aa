import pytest

from sql_snitch.agent_operator import (
    build_add_operator_call,
    build_operator_parameters,
    failsafe_method,
    new_agent_operator,
    pager_days_mask,
    parse_pager_time,
)
from sql_snitch.errors import TargetError, ValidationError


OPERATOR_ROW = {
    "id": 3,
    "name": "DBA Team",
    "enabled": 1,
    "email_address": "dba@example.com",
    "pager_address": None,
    "netsend_address": None,
    "pager_days": 0,
    "weekday_pager_start_time": 90000,
    "weekday_pager_end_time": 180000,
    "saturday_pager_start_time": 90000,
    "saturday_pager_end_time": 180000,
    "sunday_pager_start_time": 90000,
    "sunday_pager_end_time": 180000,
}


@pytest.mark.parametrize(
    "days, mask",
    [
        (["Sunday"], 1),
        (["Monday", "Friday"], 34),
        (["Weekdays"], 62),
        (["Weekend"], 65),
        (["EveryDay"], 127),
        (["weekdays", "Saturday"], 126),
        (["Weekend", "Sunday", "Saturday"], 65),
        (["Weekdays", "Weekend"], 127),
        ("Tuesday", 4),
    ],
)
def test_pager_days_mask(days, mask):
    assert pager_days_mask(days) == mask


def test_pager_days_mask_rejects_unknown_day():
    with pytest.raises(ValidationError):
        pager_days_mask(["Funday"])


@pytest.mark.parametrize("value", ["000000", "093000", "235959"])
def test_parse_pager_time(value):
    assert parse_pager_time(value, "start") == int(value)


@pytest.mark.parametrize("value", ["240000", "126000", "9000", "12:00:00", "abcdef"])
def test_parse_pager_time_rejects_bad_values(value):
    with pytest.raises(ValidationError):
        parse_pager_time(value, "start")


def test_build_parameters_with_schedule():
    params = build_operator_parameters(
        "DBA Team",
        email_address="dba@example.com",
        pager_address="pager@example.com",
        pager_days=["Weekdays", "Saturday"],
        weekday_start_time="080000",
        weekday_end_time="170000",
        saturday_start_time="100000",
        saturday_end_time="140000",
    )

    assert params == [
        ("@name", "DBA Team"),
        ("@enabled", 1),
        ("@email_address", "dba@example.com"),
        ("@pager_address", "pager@example.com"),
        ("@pager_days", 126),
        ("@weekday_pager_start_time", 80000),
        ("@weekday_pager_end_time", 170000),
        ("@saturday_pager_start_time", 100000),
        ("@saturday_pager_end_time", 140000),
    ]


def test_build_parameters_requires_both_times():
    with pytest.raises(ValidationError):
        build_operator_parameters("ops", pager_days=["Sunday"], sunday_start_time="080000")


def test_build_parameters_requires_matching_day():
    with pytest.raises(ValidationError):
        build_operator_parameters("ops", pager_days=["Weekdays"], sunday_start_time="080000", sunday_end_time="170000")


def test_build_parameters_requires_name():
    with pytest.raises(ValidationError):
        build_operator_parameters("")


def test_add_operator_call():
    sql, values = build_add_operator_call([("@name", "ops"), ("@enabled", 1)])
    assert sql == "EXEC msdb.dbo.sp_add_operator @name = ?, @enabled = ?"
    assert values == ["ops", 1]


def test_failsafe_method():
    assert failsafe_method(None) == 1
    assert failsafe_method("NotifyPager") == 2
    assert failsafe_method("notifynetsend") == 4
    with pytest.raises(ValidationError):
        failsafe_method("NotifyCarrierPigeon")


def test_new_operator_is_created(fake_conn):
    fake_conn.on("FROM msdb.dbo.sysoperators", [])
    fake_conn.on("FROM msdb.dbo.sysoperators", [OPERATOR_ROW])

    rows = new_agent_operator(fake_conn, "sql01", "DBA Team", email_address="dba@example.com")

    assert ("EXEC msdb.dbo.sp_add_operator @name = ?, @enabled = ?, @email_address = ?",
            ["DBA Team", 1, "dba@example.com"]) in fake_conn.executed
    assert not any("sp_delete_operator" in sql for sql in fake_conn.statements())
    assert not any("sp_MSsetalertinfo" in sql for sql in fake_conn.statements())
    assert rows[0]["SqlInstance"] == "sql01"
    assert rows[0]["email_address"] == "dba@example.com"
    assert rows[0]["IsFailsafeOperator"] is False


def test_existing_operator_without_force_fails(fake_conn):
    fake_conn.on("FROM msdb.dbo.sysoperators", [OPERATOR_ROW])

    with pytest.raises(TargetError):
        new_agent_operator(fake_conn, "sql01", "DBA Team")
    assert not any("sp_add_operator" in sql for sql in fake_conn.statements())


def test_existing_operator_with_force_is_recreated_as_failsafe(fake_conn):
    fake_conn.on("FROM msdb.dbo.sysoperators", [OPERATOR_ROW])

    rows = new_agent_operator(
        fake_conn,
        "sql01",
        "DBA Team",
        is_failsafe_operator=True,
        failsafe_notification_method="NotifyPager",
        force=True,
        pager_address="pager@example.com",
    )

    statements = fake_conn.statements()
    delete = next(i for i, sql in enumerate(statements) if "sp_delete_operator" in sql)
    add = next(i for i, sql in enumerate(statements) if "sp_add_operator" in sql)
    assert delete < add
    assert ("EXEC master.dbo.sp_MSsetalertinfo @failsafeoperator = ?, @notificationmethod = ?",
            ["DBA Team", 2]) in fake_conn.executed
    assert rows[0]["IsFailsafeOperator"] is True
