"""Wrapper around Adam Machanic's sp_WhoIsActive.

Options use Python names and are translated to the procedure's own
parameter names. Options left at ``None`` are not sent, so the procedure
applies its own defaults.
"""
import logging

from sql_snitch.db_connect import instance_columns, query_all_sets, query_dict, quote_name
from sql_snitch.errors import TargetError, ValidationError


FILTER_TYPES = ("session", "program", "database", "login", "host")

# option name -> (procedure parameter, kind)
PARAMETERS = {
    "filter": ("@filter", "text"),
    "filter_type": ("@filter_type", "filter_type"),
    "not_filter": ("@not_filter", "text"),
    "not_filter_type": ("@not_filter_type", "filter_type"),
    "show_own_spid": ("@show_own_spid", "switch"),
    "show_system_spids": ("@show_system_spids", "switch"),
    "show_sleeping_spids": ("@show_sleeping_spids", "level"),
    "get_full_inner_text": ("@get_full_inner_text", "switch"),
    "get_plans": ("@get_plans", "level"),
    "get_outer_command": ("@get_outer_command", "switch"),
    "get_transaction_info": ("@get_transaction_info", "switch"),
    "get_task_info": ("@get_task_info", "level"),
    "get_locks": ("@get_locks", "switch"),
    "get_average_time": ("@get_avg_time", "switch"),
    "get_additional_info": ("@get_additional_info", "switch"),
    "find_block_leaders": ("@find_block_leaders", "switch"),
    "delta_interval": ("@delta_interval", "interval"),
    "output_column_list": ("@output_column_list", "text"),
    "sort_order": ("@sort_order", "text"),
    "format_output": ("@format_output", "level"),
    "destination_table": ("@destination_table", "text"),
    "return_schema": ("@return_schema", "switch"),
    "schema": ("@schema", "text"),
    "help": ("@help", "switch"),
}


def _convert(option, kind, value):
    if kind == "switch":
        return 1 if value else None
    if kind == "level":
        if value not in (0, 1, 2):
            raise ValidationError(f"{option} must be 0, 1 or 2, got {value!r}")
        return value
    if kind == "interval":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{option} must be a non-negative integer, got {value!r}")
        return value
    if kind == "filter_type":
        value = str(value).lower()
        if value not in FILTER_TYPES:
            raise ValidationError(f"{option} must be one of {', '.join(FILTER_TYPES)}, got {value!r}")
        return value
    return str(value)


def map_parameters(options):
    """Translate option names to ``[(procedure_parameter, value), ...]``.

    Order follows the procedure's parameter list. Unknown option names and
    out-of-range values raise ValidationError.
    """
    unknown = set(options) - set(PARAMETERS)
    if unknown:
        raise ValidationError(f"Unknown sp_WhoIsActive option(s): {', '.join(sorted(unknown))}")

    mapped = []
    for option, (parameter, kind) in PARAMETERS.items():
        value = options.get(option)
        if value is None:
            continue
        value = _convert(option, kind, value)
        if value is not None:
            mapped.append((parameter, value))
    return mapped


def build_whoisactive_call(database="master", options=None):
    mapped = map_parameters(options or {})
    sql = f"EXEC {quote_name(database)}.dbo.sp_WhoIsActive"
    if mapped:
        sql += " " + ", ".join(f"{parameter} = ?" for parameter, _ in mapped)
    return sql, [value for _, value in mapped]


def procedure_exists(conn, database):
    rows = query_dict(
        conn,
        "SELECT OBJECT_ID(?) AS object_id",
        [f"{quote_name(database)}.dbo.sp_WhoIsActive"],
    )
    return bool(rows) and rows[0]["object_id"] is not None


def invoke_whoisactive(conn, server, database="master", options=None):
    sql, params = build_whoisactive_call(database, options)

    if not procedure_exists(conn, database):
        raise TargetError(
            server,
            f"sp_WhoIsActive was not found in {database}. Install it from "
            "https://github.com/amachanic/sp_whoisactive or pass the database it lives in.",
        )

    logging.info(f"Running {sql} on {server}")
    rows = query_all_sets(conn, sql, params)
    columns = instance_columns(server)
    return [dict(columns, **row) for row in rows]
