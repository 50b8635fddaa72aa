"""
Pytest configuration and shared fixtures for all tests.

No test talks to a real SQL Server or runs wmic: connections are replaced by
FakeConnection, which answers queries from canned result sets keyed on a
fragment of the SQL text.
"""
from collections import deque
from contextlib import contextmanager

import pytest


def _normalize(sql):
    return " ".join(sql.split())


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self._rows = []
        self._sets = []

    def execute(self, sql, *params):
        sql = _normalize(sql)
        self.conn.executed.append((sql, list(params)))
        self._sets = list(self.conn.answer(sql))
        self._load()
        return self

    def _load(self):
        if self._sets:
            rows = self._sets.pop(0)
            columns = list(rows[0].keys()) if rows else []
            self.description = [(c, None, None, None, None, None, None) for c in columns]
            self._rows = [tuple(row[c] for c in columns) for row in rows]
        else:
            self.description = None
            self._rows = []

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def nextset(self):
        if not self._sets:
            return False
        self._load()
        return True

    def close(self):
        self.conn.closed_cursors += 1


class FakeConnection:
    def __init__(self):
        self.executed = []
        self.closed_cursors = 0
        self.closed = False
        self._responses = []

    def on(self, fragment, *result_sets):
        """Answer SQL containing ``fragment`` with the given result sets.

        Registering the same fragment again queues a follow-up answer; the
        last answer repeats once the queue is drained.
        """
        for entry in self._responses:
            if entry[0] == fragment:
                entry[1].append(list(result_sets))
                return self
        self._responses.append((fragment, deque([list(result_sets)])))
        return self

    def answer(self, sql):
        for fragment, queue in self._responses:
            if fragment in sql:
                return queue.popleft() if len(queue) > 1 else queue[0]
        return []

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True

    def statements(self):
        return [sql for sql, _ in self.executed]


@pytest.fixture
def fake_conn():
    return FakeConnection()


@pytest.fixture
def fake_connect():
    """A connect(server, database) factory handing out FakeConnections per server."""
    connections = {}

    @contextmanager
    def connect(server, database="master"):
        conn = connections.setdefault(server, FakeConnection())
        yield conn

    connect.connections = connections
    return connect


class Console:
    def __init__(self):
        self.lines = []

    def __call__(self, msg):
        self.lines.append(msg)

    def text(self):
        return "\n".join(self.lines)


@pytest.fixture
def console():
    return Console()


@pytest.fixture
def make_fake_conn():
    return FakeConnection
