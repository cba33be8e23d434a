#!/usr/bin/env python3
"""In-memory stand-in for a psycopg2 connection and pool, used by the tests"""
import re

IDENT = r'"((?:[^"]|"")+)"'
TABLE_PATTERN = re.compile(r"(?:FROM|UPDATE) " + IDENT + r"\." + IDENT)
ASSIGN_PATTERN = re.compile(IDENT + r" = %s")


def _unquote(name):
    return name.replace('""', '"').replace("%%", "%")


class FakeTable:
    """
    Table with typed columns, an optional primary key and rows keyed by PK.

    Args:
        columns: Dict of column name -> data_type
        pk: List of primary key columns
        rows: List of row dicts
    """

    def __init__(self, columns, pk=None, rows=None):
        self.columns = dict(columns)
        self.pk = list(pk or [])
        self.rows = [dict(r) for r in (rows or [])]

    def snapshot(self):
        return [dict(r) for r in self.rows]


class FakeDatabase:
    """Catalog plus data shared by every connection from a FakePool"""

    def __init__(self, tables=None):
        # {("schema", "table"): FakeTable}
        self.tables = dict(tables or {})
        self.schemas = set(s for s, _ in self.tables)
        self.fail_on_pk = set()
        self.executed = []

    def add_schema(self, name):
        self.schemas.add(name)

    def snapshot(self, schema, table):
        return self.tables[(schema, table)].snapshot()


class FakeConnection:
    def __init__(self, db):
        self.db = db
        self.autocommit = False
        self.in_transaction = False
        self.read_only = False
        self.pending = []

    def cursor(self):
        return FakeCursor(self)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.db = conn.db
        self.result = []

    def execute(self, query, params=None):
        self.db.executed.append((query, tuple(params) if params is not None else None))
        self.result = []
        q = query.strip()

        if q in ("BEGIN", "BEGIN READ ONLY"):
            self.conn.in_transaction = True
            self.conn.read_only = q.endswith("READ ONLY")
            self.conn.pending = []
        elif q == "COMMIT":
            for table, pk_col, pk_value, values in self.conn.pending:
                for row in table.rows:
                    if row[pk_col] == pk_value:
                        row.update(values)
            self._end_transaction()
        elif q == "ROLLBACK":
            self._end_transaction()
        elif "information_schema.schemata" in q:
            self.result = [(params[0] in self.db.schemas,)]
        elif "information_schema.tables" in q:
            self.result = [((params[0], params[1]) in self.db.tables,)]
        elif "information_schema.columns" in q:
            table = self.db.tables.get((params[0], params[1]))
            if table is not None and params[2] in table.columns:
                self.result = [(params[2], table.columns[params[2]])]
        elif "information_schema.table_constraints" in q:
            table = self.db.tables.get((params[0], params[1]))
            self.result = [(c,) for c in (table.pk if table else [])]
        elif q.startswith("SELECT COUNT(*)"):
            self.result = [(len(self._table(q).rows),)]
        elif q.startswith("SELECT"):
            table = self._table(q)
            pk_col = table.pk[0]
            limit, offset = params
            keys = sorted(r[pk_col] for r in table.rows)
            self.result = [(k,) for k in keys[offset:offset + limit]]
        elif q.startswith("UPDATE"):
            self._update(q, params)
        else:
            raise AssertionError("Unexpected query: {0}".format(q))

    def _end_transaction(self):
        self.conn.in_transaction = False
        self.conn.read_only = False
        self.conn.pending = []

    def _table(self, query):
        m = TABLE_PATTERN.search(query)
        return self.db.tables[(_unquote(m.group(1)), _unquote(m.group(2)))]

    def _update(self, query, params):
        if not self.conn.in_transaction:
            raise AssertionError("UPDATE outside of a transaction")
        if self.conn.read_only:
            raise RuntimeError("cannot execute UPDATE in a read-only transaction")
        table = self._table(query)
        set_part, where_part = query.split(" WHERE ")
        columns = [_unquote(c) for c in ASSIGN_PATTERN.findall(set_part)]
        pk_col = _unquote(ASSIGN_PATTERN.findall(where_part)[0])
        pk_value = params[-1]
        if pk_value in self.db.fail_on_pk:
            raise RuntimeError("simulated failure updating {0}={1}".format(pk_col, pk_value))
        self.conn.pending.append((table, pk_col, pk_value, dict(zip(columns, params[:-1]))))

    def fetchone(self):
        return self.result[0] if self.result else None

    def fetchall(self):
        return self.result


class FakePool:
    """Mirrors psycopg2.pool.SimpleConnectionPool getconn/putconn/closeall"""

    def __init__(self, db):
        self.db = db
        self.checked_out = 0
        self.acquired = 0
        self.closed = False

    def getconn(self):
        if self.closed:
            raise RuntimeError("connection pool is closed")
        self.checked_out += 1
        self.acquired += 1
        return FakeConnection(self.db)

    def putconn(self, conn):
        self.checked_out -= 1

    def closeall(self):
        self.closed = True
