import logging
import re

from sql_snitch.db_connect import execute, instance_columns, query_dict
from sql_snitch.errors import TargetError, ValidationError


DAY_BITS = {
    "sunday": 1,
    "monday": 2,
    "tuesday": 4,
    "wednesday": 8,
    "thursday": 16,
    "friday": 32,
    "saturday": 64,
    "weekdays": 62,
    "weekend": 65,
    "everyday": 127,
}

WEEKDAY_MASK = 62

NOTIFICATION_METHODS = {
    "notifyemail": 1,
    "notifypager": 2,
    "notifynetsend": 4,
}

TIME_PATTERN = re.compile(r"^(?:[01]\d|2[0-3])[0-5]\d[0-5]\d$")


def pager_days_mask(days):
    """OR together the bits of every day or day group in ``days``.

    >>> pager_days_mask(["Monday", "Weekend"])
    67
    """
    if isinstance(days, str):
        days = [days]
    mask = 0
    for day in days:
        key = day.replace(" ", "").lower()
        if key not in DAY_BITS:
            raise ValidationError(
                f"Unknown pager day {day!r}. Valid values: Sunday..Saturday, Weekdays, Weekend, EveryDay"
            )
        mask |= DAY_BITS[key]
    return mask


def parse_pager_time(value, label):
    if not TIME_PATTERN.match(str(value)):
        raise ValidationError(f"{label} must be HHMMSS between 000000 and 235959, got {value!r}")
    return int(value)


def build_operator_parameters(
    name,
    email_address=None,
    net_send_address=None,
    pager_address=None,
    pager_days=None,
    saturday_start_time=None,
    saturday_end_time=None,
    sunday_start_time=None,
    sunday_end_time=None,
    weekday_start_time=None,
    weekday_end_time=None,
):
    """Validate inputs and map them onto sp_add_operator's parameters."""
    if not name:
        raise ValidationError("An operator name is required")

    mask = pager_days_mask(pager_days) if pager_days else None

    params = [("@name", name), ("@enabled", 1)]
    if email_address:
        params.append(("@email_address", email_address))
    if pager_address:
        params.append(("@pager_address", pager_address))
    if net_send_address:
        params.append(("@netsend_address", net_send_address))
    if mask is not None:
        params.append(("@pager_days", mask))

    periods = (
        ("weekday", weekday_start_time, weekday_end_time, WEEKDAY_MASK),
        ("saturday", saturday_start_time, saturday_end_time, DAY_BITS["saturday"]),
        ("sunday", sunday_start_time, sunday_end_time, DAY_BITS["sunday"]),
    )
    for period, start, end, bits in periods:
        if start is None and end is None:
            continue
        if start is None or end is None:
            raise ValidationError(f"Both {period} start and end times are required")
        if mask is None or not mask & bits:
            raise ValidationError(f"{period.capitalize()} pager times were given but the pager days do not include {period}")
        params.append((f"@{period}_pager_start_time", parse_pager_time(start, f"{period} start time")))
        params.append((f"@{period}_pager_end_time", parse_pager_time(end, f"{period} end time")))

    return params


def build_add_operator_call(params):
    sql = "EXEC msdb.dbo.sp_add_operator " + ", ".join(f"{parameter} = ?" for parameter, _ in params)
    return sql, [value for _, value in params]


def failsafe_method(method):
    key = (method or "NotifyEmail").lower()
    if key not in NOTIFICATION_METHODS:
        raise ValidationError(f"Unknown failsafe notification method {method!r}. Use NotifyEmail, NotifyPager or NotifyNetSend")
    return NOTIFICATION_METHODS[key]


def get_operator(conn, name):
    return query_dict(
        conn,
        "SELECT id, name, enabled, email_address, pager_address, netsend_address, "
        "pager_days, weekday_pager_start_time, weekday_pager_end_time, "
        "saturday_pager_start_time, saturday_pager_end_time, "
        "sunday_pager_start_time, sunday_pager_end_time "
        "FROM msdb.dbo.sysoperators WHERE name = ?",
        [name],
    )


def new_agent_operator(
    conn,
    server,
    name,
    is_failsafe_operator=False,
    failsafe_notification_method="NotifyEmail",
    force=False,
    **options,
):
    params = build_operator_parameters(name, **options)
    method = failsafe_method(failsafe_notification_method)

    if get_operator(conn, name):
        if not force:
            raise TargetError(server, f"Operator {name} already exists. Use force to drop and recreate it")
        logging.info(f"Dropping existing operator {name} on {server}")
        execute(conn, "EXEC msdb.dbo.sp_delete_operator @name = ?", [name])

    sql, values = build_add_operator_call(params)
    logging.info(f"Creating operator {name} on {server}")
    execute(conn, sql, values)

    if is_failsafe_operator:
        logging.info(f"Setting {name} as the failsafe operator on {server}")
        execute(
            conn,
            "EXEC master.dbo.sp_MSsetalertinfo @failsafeoperator = ?, @notificationmethod = ?",
            [name, method],
        )

    columns = instance_columns(server)
    return [dict(columns, IsFailsafeOperator=bool(is_failsafe_operator), **row) for row in get_operator(conn, name)]
