from datetime import datetime, timezone

import pytest

from ferretpg.errors import ErrorCode, ProtocolError
from ferretpg.info import (
    MAX_DOCUMENT_LEN,
    MAX_MSG_LEN,
    VERSION,
    build_info,
    get_cmd_line_opts,
    get_parameter,
    is_master,
    ping,
    query_cmd,
    server_status,
    whats_my_uri,
)


def test_build_info():
    doc = build_info()
    assert list(doc) == ["version", "versionArray", "maxBsonObjectSize", "ok"]
    assert doc["version"] == "5.0.42"
    assert doc["versionArray"] == [5, 0, 42, 0]
    assert doc["maxBsonObjectSize"] == MAX_DOCUMENT_LEN
    assert doc["ok"] == 1.0


def test_version_array_matches_version():
    doc = build_info()
    assert ".".join(str(part) for part in doc["versionArray"][:3]) == doc["version"]


def test_get_cmd_line_opts():
    assert get_cmd_line_opts() == {"argv": ["ferretdb"], "parsed": {}, "ok": 1.0}


def test_get_parameter_and_server_status():
    expected = {"version": "5.0.42", "ok": 1.0}
    assert get_parameter() == expected
    assert server_status() == expected
    assert list(get_parameter()) == ["version", "ok"]


def test_ping():
    doc = ping()
    assert doc == {"ok": 1.0}
    assert isinstance(doc["ok"], float)


def test_whats_my_uri():
    assert whats_my_uri("127.0.0.1:12345") == {"you": "127.0.0.1:12345", "ok": 1.0}


def test_is_master():
    before = datetime.now(timezone.utc)
    doc = is_master()
    after = datetime.now(timezone.utc)
    assert list(doc) == [
        "ismaster",
        "maxBsonObjectSize",
        "maxMessageSizeBytes",
        "maxWriteBatchSize",
        "localTime",
        "minWireVersion",
        "maxWireVersion",
        "readOnly",
        "ok",
    ]
    assert doc["ismaster"] is True
    assert doc["readOnly"] is False
    assert doc["maxWriteBatchSize"] == 100000
    assert doc["minWireVersion"] == 13
    assert doc["maxWireVersion"] == 13
    assert doc["maxBsonObjectSize"] == MAX_DOCUMENT_LEN
    assert doc["maxMessageSizeBytes"] == MAX_MSG_LEN
    assert before <= doc["localTime"] <= after


def test_message_limit_exceeds_document_limit():
    assert is_master()["maxMessageSizeBytes"] > build_info()["maxBsonObjectSize"]


@pytest.mark.parametrize("name", ["ismaster", "isMaster", "ISMASTER"])
def test_query_cmd_ismaster(name):
    docs = query_cmd({name: 1})
    assert len(docs) == 1
    assert docs[0]["ismaster"] is True
    assert docs[0]["ok"] == 1.0


def test_query_cmd_unhandled():
    with pytest.raises(ProtocolError) as info:
        query_cmd({"buildInfo": 1})
    assert info.value.code == ErrorCode.NOT_IMPLEMENTED
    assert "buildinfo" in info.value.message


def test_query_cmd_empty_document():
    with pytest.raises(ProtocolError) as info:
        query_cmd({})
    assert info.value.code == ErrorCode.NOT_IMPLEMENTED


def test_server_status_reports_version_constant():
    assert server_status()["version"] == VERSION
    assert build_info()["version"] == VERSION