import logging
from datetime import datetime

from sql_snitch.db_connect import execute, instance_columns, query_dict, quote_name
from sql_snitch.errors import TargetError, ValidationError


SYSTEM_SESSIONS = ("AlwaysOn_health", "system_health", "telemetry_xevents")

SESSIONS_QUERY = """
SELECT s.name AS Name,
       CASE WHEN r.name IS NULL THEN 'Stopped' ELSE 'Running' END AS Status,
       r.create_time AS StartTime,
       s.startup_state AS AutoStart
FROM sys.server_event_sessions AS s
LEFT OUTER JOIN sys.dm_xe_sessions AS r ON r.name = s.name
ORDER BY s.name
"""


def state_statement(session, state):
    return f"ALTER EVENT SESSION {quote_name(session)} ON SERVER STATE = {state}"


def job_name(session, state):
    return f"XE Session {state} - {session}"


def validate_schedule(start_at=None, stop_at=None, now=None):
    now = now or datetime.now()
    if start_at is not None and start_at <= now:
        raise ValidationError(f"start_at ({start_at:%Y-%m-%d %H:%M:%S}) must be in the future")
    if stop_at is not None and stop_at <= (start_at or now):
        raise ValidationError("stop_at must be later than start_at (or now when starting immediately)")


def build_job_calls(session, state, run_at):
    """The msdb calls that create a one-shot job running the state change at ``run_at``.

    The job deletes itself after a successful run (@delete_level = 1).
    """
    name = job_name(session, state)
    return [
        ("EXEC msdb.dbo.sp_add_job @job_name = ?, @delete_level = 1, "
         "@description = ?", [name, f"Sets Extended Events session {session} to {state}"]),
        ("EXEC msdb.dbo.sp_add_jobstep @job_name = ?, @step_name = ?, @subsystem = N'TSQL', "
         "@database_name = N'master', @command = ?", [name, name, state_statement(session, state)]),
        ("EXEC msdb.dbo.sp_add_jobschedule @job_name = ?, @name = ?, @freq_type = 1, "
         "@active_start_date = ?, @active_start_time = ?",
         [name, name, int(run_at.strftime("%Y%m%d")), int(run_at.strftime("%H%M%S"))]),
        ("EXEC msdb.dbo.sp_add_jobserver @job_name = ?, @server_name = N'(local)'", [name]),
    ]


def get_sessions(conn):
    return query_dict(conn, SESSIONS_QUERY)


def schedule_state_change(conn, server, session, state, run_at):
    name = job_name(session, state)
    if query_dict(conn, "SELECT job_id FROM msdb.dbo.sysjobs WHERE name = ?", [name]):
        logging.info(f"Replacing existing job {name} on {server}")
        execute(conn, "EXEC msdb.dbo.sp_delete_job @job_name = ?", [name])
    for sql, params in build_job_calls(session, state, run_at):
        execute(conn, sql, params)
    logging.info(f"Scheduled {name} on {server} for {run_at:%Y-%m-%d %H:%M:%S}")


def select_sessions(existing, names=None, all_sessions=False):
    """Pick the sessions to act on and return ``(selected, missing)``."""
    if all_sessions:
        return [s for s in existing if s["Name"] not in SYSTEM_SESSIONS], []
    by_name = {s["Name"]: s for s in existing}
    selected = [by_name[n] for n in names if n in by_name]
    missing = [n for n in names if n not in by_name]
    return selected, missing


def start_xe_session(conn, server, names=None, all_sessions=False, start_at=None, stop_at=None, out=None):
    if not names and not all_sessions:
        raise ValidationError("Name at least one session or use all_sessions")
    try:
        validate_schedule(start_at, stop_at)
    except ValidationError as e:
        # the schedule went stale while earlier targets ran
        raise TargetError(server, str(e))
    out = out or logging.warning

    existing = get_sessions(conn)
    selected, missing = select_sessions(existing, names or [], all_sessions)
    for name in missing:
        out(f"⚠️ {server}: session {name} does not exist")
    if not selected:
        raise TargetError(server, "no matching Extended Events sessions")

    for session in selected:
        name = session["Name"]
        if start_at is not None:
            schedule_state_change(conn, server, name, "START", start_at)
        elif session["Status"] == "Running":
            out(f"⚠️ {server}: session {name} is already running")
        else:
            logging.info(f"Starting session {name} on {server}")
            execute(conn, state_statement(name, "START"))
        if stop_at is not None:
            schedule_state_change(conn, server, name, "STOP", stop_at)

    wanted = {s["Name"] for s in selected}
    columns = instance_columns(server)
    return [dict(columns, **row) for row in get_sessions(conn) if row["Name"] in wanted]
