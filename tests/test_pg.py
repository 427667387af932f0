import sqlite3

import pytest

from ferretpg.pg import (
    Placeholder,
    Pool,
    check_connection,
    check_settings,
    quote_identifier,
    valid_utf8_locale,
)


class FakeCursor:
    def __init__(self, connection):
        self._connection = connection
        self.description = None
        self.rowcount = -1
        self._rows = []

    def execute(self, sql, params):
        self._connection.executed.append((sql, params))
        columns, rows = self._connection.results.get(sql, (None, []))
        if columns is not None:
            self.description = [(c, None, None, None, None, None, None) for c in columns]
        self._rows = list(rows)
        self.rowcount = len(self._rows)

    def fetchall(self):
        return self._rows

    def close(self):
        pass


class FakeConnection:
    def __init__(self, results=None):
        self.results = results or {}
        self.executed = []

    def cursor(self):
        return FakeCursor(self)


@pytest.fixture
def sqlite_pool():
    connection = sqlite3.connect(":memory:", isolation_level=None)
    yield Pool(connection, paramstyle="qmark")
    connection.close()


@pytest.mark.parametrize(
    "setting, expected",
    [
        ("en_US.utf8", True),
        ("en_US.utf-8", True),
        ("en_US.UTF8", True),
        ("en_US.UTF-8", True),
        ("en_UK.UTF-8", False),
        ("en_UK.utf--8", False),
        ("en_US", False),
        ("utf8", False),
    ],
)
def test_valid_utf8_locale(setting, expected):
    assert valid_utf8_locale(setting) is expected


def test_placeholder_sequence():
    placeholder = Placeholder()
    assert [placeholder.next() for _ in range(3)] == ["$1", "$2", "$3"]


def test_quote_identifier():
    assert quote_identifier("db", "coll") == '"db"."coll"'
    assert quote_identifier('a"b') == '"a""b"'
    assert quote_identifier("x\x00y") == '"xy"'


def test_pool_execute_and_query(sqlite_pool):
    sqlite_pool.execute("CREATE TABLE t (a INTEGER, b TEXT)")
    assert sqlite_pool.execute("INSERT INTO t (a, b) VALUES ($1, $2)", 1, "x") == 1
    assert sqlite_pool.execute("INSERT INTO t (a, b) VALUES ($1, $2)", 2, "y") == 1
    rows = sqlite_pool.query("SELECT a, b FROM t WHERE a = $1", 1)
    assert rows == [{"a": 1, "b": "x"}]
    assert list(rows[0]) == ["a", "b"]


def test_pool_reorders_arguments(sqlite_pool):
    assert sqlite_pool.query_row("SELECT $2, $1", "x", 2) == (2, "x")


def test_pool_skips_quoted_dollar(sqlite_pool):
    rows = sqlite_pool.query("SELECT '$1' AS a, $1 AS b", 5)
    assert rows == [{"a": "$1", "b": 5}]


def test_pool_query_row_without_rows(sqlite_pool):
    sqlite_pool.execute("CREATE TABLE e (a INTEGER)")
    with pytest.raises(LookupError):
        sqlite_pool.query_row("SELECT a FROM e")


def test_pool_missing_argument(sqlite_pool):
    with pytest.raises(ValueError):
        sqlite_pool.query("SELECT $2", 1)


def test_pool_format_paramstyle():
    connection = FakeConnection()
    pool = Pool(connection, paramstyle="format")
    pool.execute("SELECT '%' || $2, $1 % 2", 1, "a")
    assert connection.executed == [("SELECT '%%' || %s, %s %% 2", ("a", 1))]


def test_pool_numeric_paramstyle():
    connection = FakeConnection()
    pool = Pool(connection, paramstyle="numeric")
    pool.execute("SELECT $2, $1", 1, "a")
    assert connection.executed == [("SELECT :2, :1", (1, "a"))]


def test_pool_rejects_unknown_paramstyle():
    with pytest.raises(ValueError):
        Pool(FakeConnection(), paramstyle="named")


def test_check_settings_accepts_supported():
    checked = check_settings(
        [
            ("server_encoding", "UTF8"),
            ("client_encoding", "UTF8"),
            ("lc_collate", "POSIX"),
            ("lc_ctype", "en_US.utf8"),
            ("work_mem", "4MB"),
        ]
    )
    assert checked == {
        "server_encoding": "UTF8",
        "client_encoding": "UTF8",
        "lc_collate": "POSIX",
        "lc_ctype": "en_US.utf8",
    }


@pytest.mark.parametrize(
    "row",
    [
        ("server_encoding", "SQL_ASCII"),
        ("client_encoding", "LATIN1"),
        ("lc_collate", "en_UK.UTF-8"),
        ("lc_ctype", "de_DE"),
    ],
)
def test_check_settings_rejects(row):
    with pytest.raises(ValueError, match=row[0]):
        check_settings([row])


def test_check_connection():
    columns = ["name", "setting", "description"]
    rows = [
        ("server_encoding", "UTF8", ""),
        ("client_encoding", "UTF8", ""),
        ("lc_collate", "en_US.UTF-8", ""),
        ("lc_ctype", "C", ""),
        ("work_mem", "4MB", ""),
    ]
    connection = FakeConnection({"SHOW ALL": (columns, rows)})
    checked = check_connection(Pool(connection))
    assert checked == {
        "server_encoding": "UTF8",
        "client_encoding": "UTF8",
        "lc_collate": "en_US.UTF-8",
        "lc_ctype": "C",
    }


def test_check_connection_bad_encoding():
    columns = ["name", "setting", "description"]
    connection = FakeConnection({"SHOW ALL": (columns, [("server_encoding", "SQL_ASCII", "")])})
    with pytest.raises(ValueError, match="server_encoding"):
        check_connection(Pool(connection))