# ferretpg

`ferretpg` answers MongoDB commands with data kept in PostgreSQL. Commands
such as `find`, `count`, `insert`, `update` and `delete` are turned into SQL
statements. Each database is a PostgreSQL schema, and each collection is a
table inside that schema.

Commands and replies are plain Python dicts. Key order is kept, and the
first key names the command, as in `{"find": "actor", "$db": "pagila"}`.

The package has no dependencies outside the standard library.

## Storage layouts

There are two layouts. The handler picks one for each collection.

- **jsonb** (`ferretpg.jsonb_storage.JSONB1Storage`): each document is stored
  whole in one `_jsonb jsonb` column. `ferretpg.jsonb` encodes the documents.
  The JSON keeps the key order in a `"$k"` member and tags values that JSON
  cannot represent directly: `ObjectId`, `float`, `datetime`, `Regex` and
  `bytes`.
- **sql** (`ferretpg.sql_storage.SQLStorage`): an ordinary table, with one
  column per field.
  - Rows are returned as documents, with fields in column order.
  - On insert, each field except `_id` becomes a column.
  - Updates support `$set`.

For `delete`, `find`, `count`, `insert` and `update`,
`Handler.msg_storage()` checks the target table:

- If the table has a `_jsonb` column, the jsonb layout is used.
- An `insert` into a table that does not exist first runs
  `CREATE TABLE ... (_jsonb jsonb)`, then uses the jsonb layout.
- In all other cases the sql layout is used.

## Modules

| Module | Contents |
| --- | --- |
| `ferretpg.handler` | `OpCode`, `Response`, and `Handler`. `Handler` routes `OP_MSG` and `OP_QUERY` requests and counts them in `Metrics`. |
| `ferretpg.shared` | `SharedHandler`: `msg_drop`, `msg_drop_database`, `msg_get_log`, `msg_list_collections`, `msg_list_databases` |
| `ferretpg.info` | Fixed replies: `build_info()`, `get_cmd_line_opts()`, `get_parameter()`, `is_master()`, `ping()`, `server_status()`, `whats_my_uri()`, `query_cmd()` |
| `ferretpg.jsonb_storage`, `ferretpg.sql_storage` | The two `Storage` implementations. `sql_storage` also provides `row_to_document()`. |
| `ferretpg.jsonb_where`, `ferretpg.sql_where` | Turn a filter document into a SQL `WHERE` clause with numbered parameters |
| `ferretpg.jsonb` | `encode_document()`, `decode_document()`, `encode_object_id()` |
| `ferretpg.common` | `Regex`, `ObjectId`, the abstract `Storage`, `logic_expr()`, `in_array()` |
| `ferretpg.errors` | `ErrorCode`, `ProtocolError`, `protocol_error()` |
| `ferretpg.pg` | `Pool`, `Placeholder`, `quote_identifier()`, `valid_utf8_locale()`, `check_settings()`, `check_connection()` |
| `ferretpg.metrics` | `Metrics`, which counts requests per opcode and command |

## Wiring it up

`Pool` wraps any DB-API 2.0 connection, which should be in autocommit mode.
SQL is written with `$1`, `$2`, ... placeholders. `Pool` rewrites them for the
driver's `paramstyle`, which is one of `format`, `pyformat`, `qmark` or
`numeric`.

```python
from ferretpg.handler import Handler, OpCode
from ferretpg.jsonb_storage import JSONB1Storage
from ferretpg.pg import Pool, check_connection
from ferretpg.shared import SharedHandler
from ferretpg.sql_storage import SQLStorage

pool = Pool(connection, paramstyle="format")
check_connection(pool)

handler = Handler(
    pool=pool,
    shared=SharedHandler(pool, "127.0.0.1:12345"),
    sql_storage=SQLStorage(pool),
    jsonb_storage=JSONB1Storage(pool),
)

response = handler.handle(OpCode.OP_MSG, 1, {"ping": 1, "$db": "test"})
response.document  # {"ok": 1.0}
```

`handle()` accepts two kinds of body:

- For `OP_MSG`, the command document.
- For `OP_QUERY`, a pair of the full collection name and the query document.
  Only `isMaster` on `admin.$cmd` is answered.

Response ids come from a counter kept by each handler.

When an `OP_MSG` command fails:

- A `ProtocolError` is turned into an error document.
- Any other exception becomes an `InternalError` document, and
  `close_conn` is set on the response.

Any other opcode raises `ValueError`.

## Building SQL from filters

```python
from ferretpg.jsonb_where import where
from ferretpg.pg import Placeholder

sql, args = where({"last_name": "HOFFMAN", "actor_id": {"$gt": 50, "$lt": 100}}, Placeholder())
# sql  == " WHERE (_jsonb->$1 = to_jsonb($2::text)) AND "
#         "(_jsonb->$3 > to_jsonb($4::int4) AND _jsonb->$5 < to_jsonb($6::int4))"
# args == ["last_name", "HOFFMAN", "actor_id", 50, "actor_id", 100]
```

Supported filter operators:

- `$eq`, `$ne`, `$lt`, `$lte`, `$gt`, `$gte`
- `$in`, `$nin`
- `$not`
- `$regex` with `$options`. Only the `i` option is supported.
- `$and`, `$or`, `$nor`

The jsonb builder accepts these scalar types:

- 32-bit integers
- strings
- `ObjectId`
- `Regex`

## Errors

Errors meant for the client are raised as `ProtocolError`, which carries an
`ErrorCode`. `ProtocolError.document()` returns the reply document, with
`ok`, `errmsg`, `code` and `codeName`.

`protocol_error()` takes any exception and returns a pair:

- If the exception is a `ProtocolError`, or has one as its cause, that error
  is returned with `True`.
- Anything else is wrapped as `InternalError` and returned with `False`.

## Connection checks

`check_connection()` runs `SHOW ALL` and raises `ValueError` in these cases:

- `server_encoding` or `client_encoding` is not `UTF8`.
- `lc_collate` or `lc_ctype` is not `C`, not `POSIX`, and not an `en_US`
  UTF-8 locale. For example, `valid_utf8_locale("en_US.UTF-8")` is `True`.

## What it does not do

This package answers commands that have already been decoded into dicts.
It does not include:

- a network listener
- wire-message framing
- BSON decoding
- a PostgreSQL driver

The caller provides the connection and hands `Handler` the decoded request.
Cursors are not kept: every `find` returns all of its results in
`firstBatch`, with cursor id `0`. Projections and negative limits are
rejected with `NotImplemented`.

## Running the tests

```
pip install -e ".[test]"
pytest
```