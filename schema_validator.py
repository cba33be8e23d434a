#!/usr/bin/env python3
"""Schema validation module checking the configuration against catalog metadata"""
from anonymize_database_utils import (
    debug_print, ColumnInfo, parse_generator_type, compatible_categories,
    accepted_value_kinds,
    MissingSchemaError, MissingTableError, MissingColumnError,
    IncompatibleGeneratorTypeError, PrimaryKeyColumnError, NoPrimaryKeyError
)
from batch_planner import count_rows


def schema_exists(conn, schema):
    """Check information_schema.schemata for the schema"""
    cur = conn.cursor()
    cur.execute(
        "SELECT EXISTS(SELECT 1 FROM information_schema.schemata WHERE schema_name = %s)",
        (schema,)
    )
    return bool(cur.fetchone()[0])


def table_exists(conn, schema, table):
    """Check information_schema.tables for the table"""
    cur = conn.cursor()
    cur.execute(
        "SELECT EXISTS(SELECT 1 FROM information_schema.tables "
        "WHERE table_schema = %s AND table_name = %s)",
        (schema, table)
    )
    return bool(cur.fetchone()[0])


def load_column_info(conn, schema, table, column):
    """Load column name and data type, or None if the column is missing"""
    cur = conn.cursor()
    cur.execute(
        "SELECT column_name, data_type FROM information_schema.columns "
        "WHERE table_schema = %s AND table_name = %s AND column_name = %s",
        (schema, table, column)
    )
    r = cur.fetchone()
    return ColumnInfo(*r) if r else None


def load_table_pk(conn, schema, table):
    """Load primary key column names in key order"""
    cur = conn.cursor()
    cur.execute(
        "SELECT kcu.column_name FROM information_schema.table_constraints tc "
        "JOIN information_schema.key_column_usage kcu "
        "ON kcu.constraint_schema = tc.constraint_schema "
        "AND kcu.constraint_name = tc.constraint_name "
        "AND kcu.table_name = tc.table_name "
        "WHERE tc.constraint_type = 'PRIMARY KEY' "
        "AND tc.table_schema = %s AND tc.table_name = %s "
        "ORDER BY kcu.ordinal_position",
        (schema, table)
    )
    return [r[0] for r in cur.fetchall()]


class SchemaValidator:
    """
    Verifies every schema, table and column named in the configuration
    before anything is written.

    Handles:
    - Schema, table and column existence
    - Rules targeting a primary key column (always rejected)
    - Generator identifier parsing and availability per locale
    - Generator category and value kind vs. column data type compatibility
    - Single-column primary key presence (optional, skipped for empty tables)

    Entities are checked in configuration order and the first violation
    is raised immediately.
    """

    def __init__(self, conn, config, value_generator, check_primary_keys=True):
        """
        Initialize schema validator.

        Args:
            conn: PostgreSQL connection (catalog reads only)
            config: Tuple of SchemaConfig
            value_generator: ValueGenerator used to confirm generators exist
            check_primary_keys: Fail on non-empty tables without a single-column PK
        """
        self.conn = conn
        self.config = config
        self.value_generator = value_generator
        self.check_primary_keys = check_primary_keys

        # Column data types indexed by "schema.table.column"
        self.column_types = {}

    def validate(self):
        print("Validating configuration against database...")
        for schema in self.config:
            if not schema_exists(self.conn, schema.name):
                raise MissingSchemaError(schema.name)

            for table in schema.tables:
                self.validate_table(schema.name, table)

        print("Configuration validation successful.")
        return self.column_types

    def validate_table(self, schema_name, table_cfg):
        if not table_exists(self.conn, schema_name, table_cfg.name):
            raise MissingTableError(schema_name, table_cfg.name)

        # Batches page by the key, so it must never be rewritten
        pk_columns = load_table_pk(self.conn, schema_name, table_cfg.name)

        for rule in table_cfg.columns:
            info = load_column_info(self.conn, schema_name, table_cfg.name, rule.name)
            if info is None:
                raise MissingColumnError(schema_name, table_cfg.name, rule.name)
            if rule.name in pk_columns:
                raise PrimaryKeyColumnError(schema_name, table_cfg.name, rule.name)

            self.validate_generator_type(rule, info)
            key = "{0}.{1}.{2}".format(schema_name, table_cfg.name, rule.name)
            self.column_types[key] = info.data_type
            debug_print("{0}: {1} -> {2}".format(key, info.data_type, rule.type))

        if self.check_primary_keys and len(pk_columns) != 1:
            # An empty table is a no-op for the executor and needs no key
            if count_rows(self.conn, schema_name, table_cfg.name) == 0:
                debug_print("{0}.{1}: no single-column primary key, table is empty".format(
                    schema_name, table_cfg.name))
            else:
                raise NoPrimaryKeyError(schema_name, table_cfg.name, pk_columns)

    def validate_generator_type(self, rule, column_info):
        """
        Check that the rule's generator exists and may write to the column.

        Args:
            rule: ColumnRule
            column_info: ColumnInfo from the catalog

        Raises:
            InvalidGeneratorTypeError: identifier is malformed or unknown
            IncompatibleGeneratorTypeError: category not allowed for the data
                type, or the method returns values the column cannot store
        """
        gen = parse_generator_type(rule.type)
        if not self.value_generator.has_generator(gen.category, gen.method, rule.locale_code):
            raise self.value_generator.unknown_generator_error(
                gen.category, gen.method, rule.locale_code)

        if gen.category not in compatible_categories(column_info.data_type):
            raise IncompatibleGeneratorTypeError(rule.type, column_info.data_type, rule.name)

        kind = self.value_generator.value_kind(gen.category, gen.method)
        if kind not in accepted_value_kinds(column_info.data_type):
            raise IncompatibleGeneratorTypeError(rule.type, column_info.data_type, rule.name)
        return gen
