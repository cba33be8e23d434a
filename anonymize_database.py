#!/usr/bin/env python3
"""Anonymize PostgreSQL columns in place from a JSON configuration"""
import argparse, json, os, sys
from getpass import getpass

import psycopg2
from psycopg2 import pool as pg_pool
from dotenv import load_dotenv

from anonymize_database_utils import (
    GLOBALS, debug_print, ColumnRule, TableConfig, SchemaConfig, DbConfig,
    ConfigError, SUPPORTED_LOCALES, DEFAULT_PG_HOST, DEFAULT_PG_PORT
)
from schema_validator import SchemaValidator
from mutation_executor import MutationExecutor
from value_generator import ValueGenerator


def _require_name(entry, what):
    if not isinstance(entry, dict):
        raise ConfigError("Each {0} entry must be an object".format(what))
    name = entry.get("name")
    if not isinstance(name, str) or not name:
        raise ConfigError("Each {0} entry must have a non-empty 'name'".format(what))
    return name


def parse_column(entry, where):
    name = _require_name(entry, "column")
    gen_type = entry.get("type")
    if not isinstance(gen_type, str) or not gen_type:
        raise ConfigError("Column '{0}' in {1} must have a 'type' string".format(name, where))
    locale_code = entry.get("localeCode")
    if locale_code is not None and locale_code not in SUPPORTED_LOCALES:
        raise ConfigError("Column '{0}' in {1} has unsupported localeCode '{2}' (expected one of: {3})".format(
            name, where, locale_code, ", ".join(sorted(SUPPORTED_LOCALES))))
    return ColumnRule(name, gen_type, locale_code)


def parse_table(entry, schema_name):
    name = _require_name(entry, "table")
    where = "{0}.{1}".format(schema_name, name)
    columns = entry.get("columns")
    if not isinstance(columns, list) or not columns:
        raise ConfigError("Table {0} must have a non-empty 'columns' array".format(where))
    rules = tuple(parse_column(c, where) for c in columns)

    seen = set()
    for rule in rules:
        if rule.name in seen:
            raise ConfigError("Table {0} lists column '{1}' more than once".format(where, rule.name))
        seen.add(rule.name)

    batch_size = entry.get("batchSize")
    if batch_size is not None:
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            raise ConfigError("Table {0} batchSize must be a positive integer".format(where))
    return TableConfig(name, rules, batch_size)


def parse_config(raw):
    """
    Convert a decoded configuration document into SchemaConfig tuples.

    Raises: ConfigError on any structural problem
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("schemas"), list):
        raise ConfigError("Config must be an object with a 'schemas' array")
    schemas = []
    for entry in raw["schemas"]:
        name = _require_name(entry, "schema")
        tables = entry.get("tables")
        if not isinstance(tables, list):
            raise ConfigError("Schema '{0}' must have a 'tables' array".format(name))
        schemas.append(SchemaConfig(name, tuple(parse_table(t, name) for t in tables)))
    return tuple(schemas)


def load_config(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return parse_config(raw)
    except IOError:
        print("Error: Config file not found: {0}".format(path), file=sys.stderr)
        sys.exit(1)
    except (json.JSONDecodeError, ValueError) as e:
        print("Error: Invalid config: {0}".format(e), file=sys.stderr)
        sys.exit(1)


def resolve_db_config(args, environ=None):
    """
    Resolve connection parameters: CLI value, then environment, then default.

    Raises: ConfigError when database or user cannot be resolved
    """
    if environ is None:
        environ = os.environ
    host = args.host or environ.get("PG_HOST") or DEFAULT_PG_HOST
    port = args.port or environ.get("PG_PORT") or DEFAULT_PG_PORT
    database = args.database or environ.get("PG_DATABASE") or ""
    user = args.user or environ.get("PG_USER") or ""
    password = args.password or environ.get("PG_PASSWORD") or ""

    if not database or not user:
        raise ConfigError(
            "Database name and user must be provided via CLI options or environment variables.")
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigError("Invalid port: {0}".format(port))
    return DbConfig(host, port, database, user, password)


def create_connection_pool(db_config, maxconn=2):
    try:
        return pg_pool.SimpleConnectionPool(
            1, maxconn,
            host=db_config.host, port=db_config.port, dbname=db_config.database,
            user=db_config.user, password=db_config.password)
    except psycopg2.Error as e:
        print("Error: Failed to connect to PostgreSQL: {0}".format(e), file=sys.stderr)
        sys.exit(1)


class DatabaseAnonymizer:
    """Validates the whole configuration, then rewrites each table in order"""

    def __init__(self, pool, config, dry_run=False, value_generator=None):
        self.pool = pool
        self.config = config
        self.dry_run = dry_run
        self.value_generator = value_generator if value_generator is not None else ValueGenerator()
        self.executor = MutationExecutor(self.value_generator, dry_run=dry_run)

    def _acquire(self):
        conn = self.pool.getconn()
        try:
            conn.autocommit = True
        except Exception:
            self.pool.putconn(conn)
            raise
        return conn

    def validate_config(self):
        conn = self._acquire()
        try:
            SchemaValidator(conn, self.config, self.value_generator).validate()
        finally:
            self.pool.putconn(conn)

    def anonymize_table(self, schema_name, table_cfg):
        conn = self._acquire()
        try:
            return self.executor.anonymize_table(conn, schema_name, table_cfg)
        finally:
            self.pool.putconn(conn)

    def anonymize(self):
        print("Starting database anonymization process{0}...".format(
            " (dry run)" if self.dry_run else ""))
        results = []
        try:
            self.validate_config()

            for schema in self.config:
                print("Processing schema: {0}".format(schema.name))
                for table in schema.tables:
                    results.append(self.anonymize_table(schema.name, table))

            print("Anonymization completed successfully.")
        except Exception as e:
            print("Error during anonymization: {0}".format(e), file=sys.stderr)
            raise
        return results


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="PostgreSQL database anonymizer")
    p.add_argument("-c", "--config", required=True, help="Path to the JSON configuration file")
    p.add_argument("-H", "--host", default=None, help="Database host (env PG_HOST, default: localhost)")
    p.add_argument("-p", "--port", default=None, help="Database port (env PG_PORT, default: 5432)")
    p.add_argument("-d", "--database", default=None, help="Database name (env PG_DATABASE)")
    p.add_argument("-u", "--user", default=None, help="Database user (env PG_USER)")
    p.add_argument("-s", "--password", default=None, help="Database password (env PG_PASSWORD)")
    p.add_argument("--ask-pass", action="store_true", help="Prompt for password")
    p.add_argument("--dry-run", action="store_true", help="Perform a dry run without making actual changes")
    p.add_argument("--debug", action="store_true", help="Enable debug output")
    return p.parse_args(argv)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)
    GLOBALS["debug"] = args.debug

    try:
        db_config = resolve_db_config(args)
    except ConfigError as e:
        print("Error: {0}".format(e), file=sys.stderr)
        sys.exit(1)
    if args.ask_pass and not db_config.password:
        db_config = db_config._replace(password=getpass("Password for {0}@{1}: ".format(
            db_config.user, db_config.host)))

    cfg = load_config(args.config)
    pool = create_connection_pool(db_config)
    try:
        anonymizer = DatabaseAnonymizer(pool, cfg, dry_run=args.dry_run)
        results = anonymizer.anonymize()
        for r in results:
            debug_print("{0}.{1}: {2} rows in {3} batch(es)".format(
                r.schema, r.table, r.rows_updated, r.batches))
        print(" {0} {1} row(s) across {2} table(s)".format(
            "Checked" if args.dry_run else "Anonymized",
            sum(r.rows_updated for r in results), len(results)))
    except Exception as e:
        print("Error: {0}".format(e), file=sys.stderr)
        if GLOBALS["debug"]:
            import traceback
            traceback.print_exc()
        sys.exit(1)
    finally:
        pool.closeall()


if __name__ == "__main__":
    main()
