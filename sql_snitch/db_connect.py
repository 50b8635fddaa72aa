import logging
import time
from contextlib import contextmanager

import pyodbc

from sql_snitch.config import Settings


DEFAULT_INSTANCE = "MSSQLSERVER"


def quote_name(name):
    """Bracket-quote an identifier the way QUOTENAME() does."""
    return "[" + str(name).replace("]", "]]") + "]"


def split_instance(server):
    # "HOST\INST,1433" -> ("HOST", "INST")
    host, _, instance = server.partition("\\")
    host = host.split(",")[0]
    instance = instance.split(",")[0]
    return host, instance or DEFAULT_INSTANCE


def instance_columns(server):
    host, instance = split_instance(server)
    return {"ComputerName": host, "InstanceName": instance, "SqlInstance": server}


def build_connection_string(server, database="master", settings=None, username=None, password=None):
    settings = settings or Settings()
    parts = [
        f"DRIVER={{{settings.driver}}}",
        f"SERVER={server}",
        f"DATABASE={database}",
    ]
    if username:
        parts.append(f"UID={username}")
        parts.append(f"PWD={password or ''}")
    else:
        parts.append("Trusted_Connection=yes")
    parts.append(f"Encrypt={'yes' if settings.encrypt else 'no'}")
    if settings.trust_server_certificate:
        parts.append("TrustServerCertificate=yes")
    return ";".join(parts) + ";"


def get_connection(server, database="master", settings=None, username=None, password=None):
    settings = settings or Settings()
    connection_string = build_connection_string(server, database, settings, username, password)
    retries = max(1, settings.retries)

    for attempt in range(1, retries + 1):
        try:
            # ALTER EVENT SESSION refuses to run inside a user transaction.
            conn = pyodbc.connect(connection_string, timeout=settings.timeout, autocommit=True)
            logging.info(f"✅ Connected to {server} ({database}).")
            return conn
        except pyodbc.Error as e:
            logging.warning(f"❌ Attempt {attempt} to reach {server} failed: {e}")
            if attempt < retries:
                logging.info(f"Retrying in {settings.retry_delay} seconds...")
                time.sleep(settings.retry_delay)
            else:
                logging.error(f"❌ Max retries reached. Connection to {server} failed.")
                raise


@contextmanager
def open_connection(server, database="master", settings=None, username=None, password=None):
    conn = get_connection(server, database, settings, username, password)
    try:
        yield conn
    finally:
        conn.close()
        logging.debug(f"Connection to {server} closed.")


def _rows(cursor):
    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def query_dict(conn, sql, params=()):
    """Execute a query and return the first result set as a list of dicts."""
    cursor = conn.cursor()
    try:
        cursor.execute(sql, *params)
        if cursor.description is None:
            return []
        results = _rows(cursor)
        logging.debug(f"Query returned {len(results)} rows.")
        return results
    except pyodbc.Error as e:
        logging.error(f"Failed to execute query: {e}")
        raise
    finally:
        cursor.close()


def query_all_sets(conn, sql, params=()):
    """Execute a batch and collect the rows of every result set it produces.

    Result sets without a column description (row counts, PRINT output) are
    skipped.
    """
    cursor = conn.cursor()
    try:
        cursor.execute(sql, *params)
        results = []
        while True:
            if cursor.description is not None:
                results.extend(_rows(cursor))
            if not cursor.nextset():
                break
        return results
    except pyodbc.Error as e:
        logging.error(f"Failed to execute batch: {e}")
        raise
    finally:
        cursor.close()


def execute(conn, sql, params=()):
    cursor = conn.cursor()
    try:
        cursor.execute(sql, *params)
    except pyodbc.Error as e:
        logging.error(f"Failed to execute statement: {e}")
        raise
    finally:
        cursor.close()
