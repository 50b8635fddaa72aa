import argparse
import functools
import getpass
import logging
import re
from datetime import datetime

from sql_snitch.agent_operator import build_add_operator_call, build_operator_parameters, failsafe_method, new_agent_operator
from sql_snitch.batch import for_each_target
from sql_snitch.cim import check_computer_name, wmic_command
from sql_snitch.config import Settings
from sql_snitch.db_connect import open_connection
from sql_snitch.disk_alignment import PARTITION_PROPERTIES, audit_disk_alignment
from sql_snitch.errors import ValidationError
from sql_snitch.instance_queries import QUERIES, run_query
from sql_snitch.report_logger import ReportLogger
from sql_snitch.whoisactive import FILTER_TYPES, build_whoisactive_call, invoke_whoisactive
from sql_snitch.xe_session import start_xe_session, validate_schedule


WHOISACTIVE_SWITCHES = (
    "show_own_spid",
    "show_system_spids",
    "get_full_inner_text",
    "get_outer_command",
    "get_transaction_info",
    "get_locks",
    "get_average_time",
    "get_additional_info",
    "find_block_leaders",
    "return_schema",
    "help_text",
)


def _timestamp(value):
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an ISO date/time such as 2026-10-20T01:30, got {value!r}")
    if parsed.tzinfo is not None:
        # Agent schedules run in the server's local time
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def build_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('-s', '--server', action='append', required=True, help="Target server (repeat for several)")
    common.add_argument('--user', type=str, help="SQL login (default: Windows authentication)")
    common.add_argument('--password', type=str, help="SQL login password (prompted when omitted)")
    common.add_argument('--driver', type=str, help="ODBC driver name")
    common.add_argument('--output', type=str, help="Set custom output filename prefix (e.g., 'prod-sql01')")
    common.add_argument('--export', action='store_true', help="Save the report as Markdown and JSON")
    common.add_argument('--dry-run', action='store_true', help="Show the outbound calls without connecting")
    common.add_argument('--verbose', action='store_true', help="Enable verbose output")
    common.add_argument('--debug', action='store_true', help="Enable debug output")

    parser = argparse.ArgumentParser(prog="sql-snitch", description="SQL Server administration commands")
    commands = parser.add_subparsers(dest='command', required=True)

    who = commands.add_parser('whoisactive', parents=[common], help="Run sp_WhoIsActive")
    who.add_argument('--database', default='master', help="Database holding sp_WhoIsActive")
    who.add_argument('--filter', type=str)
    who.add_argument('--filter-type', choices=FILTER_TYPES)
    who.add_argument('--not-filter', type=str)
    who.add_argument('--not-filter-type', choices=FILTER_TYPES)
    for level in ('show_sleeping_spids', 'get_plans', 'get_task_info', 'format_output'):
        who.add_argument('--' + level.replace('_', '-'), type=int, choices=(0, 1, 2))
    who.add_argument('--delta-interval', type=int)
    who.add_argument('--output-column-list', type=str)
    who.add_argument('--sort-order', type=str)
    who.add_argument('--destination-table', type=str)
    who.add_argument('--schema', type=str)
    for switch in WHOISACTIVE_SWITCHES:
        # argparse owns --help
        flag = 'procedure_help' if switch == 'help_text' else switch
        who.add_argument('--' + flag.replace('_', '-'), dest=switch, action='store_true')

    op = commands.add_parser('new-operator', parents=[common], help="Create a SQL Agent operator")
    op.add_argument('--name', required=True)
    op.add_argument('--email', dest='email_address')
    op.add_argument('--net-send', dest='net_send_address')
    op.add_argument('--pager', dest='pager_address')
    op.add_argument('--pager-days', nargs='+', help="Sunday..Saturday, Weekdays, Weekend, EveryDay")
    for period in ('weekday', 'saturday', 'sunday'):
        op.add_argument(f'--{period}-start', dest=f'{period}_start_time', help="HHMMSS")
        op.add_argument(f'--{period}-end', dest=f'{period}_end_time', help="HHMMSS")
    op.add_argument('--failsafe', dest='is_failsafe_operator', action='store_true')
    op.add_argument('--failsafe-method', default='NotifyEmail', choices=('NotifyEmail', 'NotifyPager', 'NotifyNetSend'))
    op.add_argument('--force', action='store_true', help="Drop and recreate an existing operator")

    xe = commands.add_parser('start-xe', parents=[common], help="Start Extended Events sessions")
    xe.add_argument('--session', action='append', dest='sessions')
    xe.add_argument('--all-sessions', action='store_true', help="Every session except the system ones")
    xe.add_argument('--start-at', type=_timestamp, help="Start through a one-shot Agent job at this time")
    xe.add_argument('--stop-at', type=_timestamp, help="Stop through a one-shot Agent job at this time")

    disk = commands.add_parser('disk-alignment', parents=[common], help="Audit partition alignment")
    disk.add_argument('--no-sql-check', action='store_true', help="Report every partition, not only SQL Server drives")

    query = commands.add_parser('query', parents=[common], help="Run a canned diagnostic query")
    query.add_argument('name', choices=sorted(QUERIES))
    query.add_argument('--database', default='master')

    return parser


def run_whoisactive(args, report, connect):
    options = {
        'filter': args.filter,
        'filter_type': args.filter_type,
        'not_filter': args.not_filter,
        'not_filter_type': args.not_filter_type,
        'show_sleeping_spids': args.show_sleeping_spids,
        'get_plans': args.get_plans,
        'get_task_info': args.get_task_info,
        'format_output': args.format_output,
        'delta_interval': args.delta_interval,
        'output_column_list': args.output_column_list,
        'sort_order': args.sort_order,
        'destination_table': args.destination_table,
        'schema': args.schema,
        'help': args.help_text,
    }
    for switch in WHOISACTIVE_SWITCHES:
        if switch != 'help_text':
            options[switch] = getattr(args, switch)

    sql, params = build_whoisactive_call(args.database, options)
    if args.dry_run:
        report.write(f"🧪 Dry run: {sql} {params}")
        return []

    def action(server):
        with connect(server) as conn:
            return invoke_whoisactive(conn, server, args.database, options)

    return for_each_target(args.server, action, report)


def run_new_operator(args, report, connect):
    options = {
        key: getattr(args, key)
        for key in (
            'email_address', 'net_send_address', 'pager_address', 'pager_days',
            'weekday_start_time', 'weekday_end_time', 'saturday_start_time',
            'saturday_end_time', 'sunday_start_time', 'sunday_end_time',
        )
    }
    params = build_operator_parameters(args.name, **options)
    failsafe_method(args.failsafe_method)
    if args.dry_run:
        sql, values = build_add_operator_call(params)
        report.write(f"🧪 Dry run: {sql} {values}")
        return []

    def action(server):
        with connect(server) as conn:
            return new_agent_operator(
                conn,
                server,
                args.name,
                is_failsafe_operator=args.is_failsafe_operator,
                failsafe_notification_method=args.failsafe_method,
                force=args.force,
                **options,
            )

    return for_each_target(args.server, action, report)


def run_start_xe(args, report, connect):
    if not args.sessions and not args.all_sessions:
        raise ValidationError("Use --session NAME or --all-sessions")
    validate_schedule(args.start_at, args.stop_at)
    if args.dry_run:
        report.write(f"🧪 Dry run: sessions={args.sessions or 'all'} start_at={args.start_at} stop_at={args.stop_at}")
        return []

    def action(server):
        with connect(server) as conn:
            return start_xe_session(
                conn,
                server,
                names=args.sessions,
                all_sessions=args.all_sessions,
                start_at=args.start_at,
                stop_at=args.stop_at,
                out=report.write,
            )

    return for_each_target(args.server, action, report)


def run_disk_alignment(args, report, connect):
    for computer in args.server:
        check_computer_name(computer)
    if args.dry_run:
        for computer in args.server:
            report.write(f"🧪 Dry run: {wmic_command(computer, 'Win32_DiskPartition', PARTITION_PROPERTIES)}")
        return []

    def action(computer):
        return audit_disk_alignment(computer, connect=connect, no_sql_check=args.no_sql_check, out=report.write)

    return for_each_target(args.server, action, report)


def run_query_command(args, report, connect):
    if args.dry_run:
        report.write(f"🧪 Dry run: {args.name} against {', '.join(args.server)}")
        return []

    def action(server):
        with connect(server, args.database) as conn:
            return run_query(conn, server, args.name)

    return for_each_target(args.server, action, report)


COMMANDS = {
    'whoisactive': (run_whoisactive, "sp_WhoIsActive"),
    'new-operator': (run_new_operator, "SQL Agent operators"),
    'start-xe': (run_start_xe, "Extended Events sessions"),
    'disk-alignment': (run_disk_alignment, "Partition alignment"),
    'query': (run_query_command, "Query results"),
}


def configure_logging(args):
    level = logging.DEBUG if args.debug else logging.INFO if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def main(argv=None, report=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args)

    try:
        settings = Settings.from_env()
    except ValidationError as e:
        parser.exit(2, f"{parser.prog}: error: {e}\n")
    if args.driver:
        settings.driver = args.driver
    username = args.user or settings.username
    password = args.password or settings.password
    if username and not password and not args.dry_run:
        password = getpass.getpass(f"Password for {username}: ")

    connect = functools.partial(open_connection, settings=settings, username=username, password=password)
    report = report or ReportLogger()
    handler, title = COMMANDS[args.command]

    try:
        rows = handler(args, report, connect)
    except ValidationError as e:
        report.failure(str(e))
        parser.exit(2, f"{parser.prog}: error: {e}\n")

    if not args.dry_run:
        report.write_table(rows, title)

    if args.export:
        # Determine base filename
        base = args.output or "_".join(args.server)
        safe_name = re.sub(r'[^A-Za-z0-9_\-]', '_', base)
        report.export(f"sql_snitch_{args.command}_{safe_name}.md")
        report.export_json(f"sql_snitch_{args.command}_{safe_name}.json")
    report.print_summary()
    return rows


if __name__ == "__main__":
    main()
