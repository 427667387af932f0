import json
from datetime import datetime, timezone

import pytest

from ferretpg.errors import ErrorCode, ProtocolError
from ferretpg.shared import SharedHandler


class FakePool:
    def __init__(self, tables=None, sizes=None, total_size=0, server_version="14.1 (Debian)", fail=False):
        self.tables = tables or {}
        self.sizes = sizes or {}
        self.total_size = total_size
        self.server_version = server_version
        self.fail = fail
        self.executed = []

    def query(self, sql, *args):
        if "information_schema.schemata" in sql:
            return [{"schema_name": name} for name in sorted(self.tables)]
        if "information_schema.tables" in sql:
            return [{"table_name": name} for name in self.tables.get(args[0], [])]
        raise AssertionError(sql)

    def query_row(self, sql, *args):
        if sql == "SHOW server_version":
            return (self.server_version,)
        if "pg_total_relation_size" in sql:
            return (self.sizes.get(args[0], 0),)
        if "pg_database_size" in sql:
            return (self.total_size,)
        raise AssertionError(sql)

    def execute(self, sql, *args):
        self.executed.append((sql, args))
        if self.fail:
            raise RuntimeError("relation does not exist")
        return 0


FIXED = datetime(2020, 2, 15, 9, 34, 33, tzinfo=timezone.utc)


def make(pool, **kwargs):
    return SharedHandler(pool, "127.0.0.1:12345", **kwargs)


def test_drop_reply_and_sql():
    pool = FakePool()
    reply = make(pool).msg_drop({"drop": "actor", "$db": "monila"})
    assert reply == {"nIndexesWas": 0, "ns": "monila.actor", "ok": 1.0}
    assert pool.executed == [('DROP TABLE "monila"."actor" CASCADE', ())]


def test_drop_failure_is_namespace_not_found():
    with pytest.raises(ProtocolError) as info:
        make(FakePool(fail=True)).msg_drop({"drop": "missing", "$db": "monila"})
    assert info.value.code == ErrorCode.NAMESPACE_NOT_FOUND
    assert info.value.message.startswith("MsgDrop: ns not found: ")


def test_drop_database():
    pool = FakePool()
    reply = make(pool).msg_drop_database({"dropDatabase": 1, "$db": "dummy_db"})
    assert reply == {"dropped": "dummy_db", "ok": 1.0}
    assert pool.executed == [('DROP SCHEMA IF EXISTS "dummy_db" CASCADE', ())]


def test_drop_database_without_db():
    with pytest.raises(ValueError, match="no db"):
        make(FakePool()).msg_drop_database({"dropDatabase": 1})


def test_get_log_startup_warnings():
    handler = make(FakePool(), version="v0.1.0", clock=lambda: FIXED)
    reply = handler.msg_get_log({"getLog": "startupWarnings", "$db": "admin"})
    assert reply["ok"] == 1.0
    assert reply["totalLinesWritten"] == len(reply["log"])
    entries = [json.loads(line) for line in reply["log"]]
    assert "FerretDB v0.1.0 and PostgreSQL 14.1." in entries[0]["msg"]
    for entry in entries:
        assert entry["tags"] == ["startupWarnings"]
        assert entry["id"] == 42000
        assert entry["ctx"] == "initandlisten"
        assert entry["t"] == {"$date": "2020-02-15T09:34:33Z"}


def test_get_log_keeps_milliseconds():
    moment = datetime(2020, 2, 15, 9, 34, 33, 120000, tzinfo=timezone.utc)
    handler = make(FakePool(), clock=lambda: moment)
    reply = handler.msg_get_log({"getLog": "startupWarnings"})
    assert json.loads(reply["log"][0])["t"]["$date"] == "2020-02-15T09:34:33.12Z"


def test_get_log_other_value_not_implemented():
    with pytest.raises(ProtocolError) as info:
        make(FakePool()).msg_get_log({"getLog": "global"})
    assert info.value.code == ErrorCode.NOT_IMPLEMENTED
    assert info.value.message == 'MsgGetLog: unhandled getLog value "global"'


def test_list_collections_sorted():
    pool = FakePool(tables={"monila": ["film", "actor"]})
    reply = make(pool).msg_list_collections({"listCollections": 1, "$db": "monila"})
    assert reply == {
        "cursor": {
            "id": 0,
            "ns": "monila.$cmd.listCollections",
            "firstBatch": [
                {"name": "actor", "type": "collection"},
                {"name": "film", "type": "collection"},
            ],
        },
        "ok": 1.0,
    }


@pytest.mark.parametrize(
    "extra",
    [{"filter": {"name": "actor"}}, {"cursor": {"batchSize": 1}}, {"nameOnly": False}],
)
def test_list_collections_unsupported(extra):
    document = {"listCollections": 1, "$db": "monila", **extra}
    with pytest.raises(ProtocolError) as info:
        make(FakePool()).msg_list_collections(document)
    assert info.value.code == ErrorCode.NOT_IMPLEMENTED


def test_list_collections_empty_options_allowed():
    document = {"listCollections": 1, "filter": {}, "cursor": {}, "nameOnly": True, "$db": "test"}
    reply = make(FakePool()).msg_list_collections(document)
    assert reply["cursor"]["firstBatch"] == []


def test_list_databases():
    pool = FakePool(
        tables={
            "monila": ["actor"],
            "pagila": ["actor"],
            "test": [],
            "pg_catalog": ["pg_class"],
            "information_schema": ["tables"],
        },
        sizes={"monila.actor": 13516800, "pagila.actor": 7127040},
        total_size=30114595,
    )
    reply = make(pool).msg_list_databases({"listDatabases": 1})
    assert reply == {
        "databases": [
            {"name": "monila", "sizeOnDisk": 13516800, "empty": False},
            {"name": "pagila", "sizeOnDisk": 7127040, "empty": False},
            {"name": "test", "sizeOnDisk": 0, "empty": True},
        ],
        "totalSize": 30114595,
        "totalSizeMb": 28,
        "ok": 1.0,
    }


def test_list_databases_sums_tables():
    pool = FakePool(tables={"db": ["a", "b"]}, sizes={"db.a": 100, "db.b": 200})
    reply = make(pool).msg_list_databases({"listDatabases": 1})
    assert reply["databases"][0]["sizeOnDisk"] == 300
    assert reply["totalSizeMb"] == 0