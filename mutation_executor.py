#!/usr/bin/env python3
"""Mutation module rewriting configured columns one batch transaction at a time"""
import sys

from anonymize_database_utils import (
    debug_print, parse_generator_type, render_pk_page_statement,
    render_update_statement, TableResult, NoPrimaryKeyError, PrimaryKeyColumnError,
    MutationFailedError
)
from batch_planner import BatchPlanner
from schema_validator import load_table_pk


class MutationExecutor:
    """
    Rewrites configured columns row by row inside per-batch transactions.

    Handles:
    - Lazy primary key discovery when a table's first batch begins
    - Refusing rules that target the primary key the pages are ordered by
    - Primary-key ordered page fetches (LIMIT/OFFSET)
    - One parameterized UPDATE per row, values bound, identifiers quoted
    - COMMIT per batch, ROLLBACK of the whole batch on any failure
    - Dry run: statements are built but never sent, batches always roll back

    The connection must be in autocommit mode; the only transactions are
    the explicit BEGIN/COMMIT pairs issued here.
    """

    def __init__(self, value_generator, dry_run=False, planner=None):
        """
        Args:
            value_generator: ValueGenerator producing column values
            dry_run: Compute statements without persisting them
            planner: BatchPlanner (a default one is created when omitted)
        """
        self.value_generator = value_generator
        self.dry_run = dry_run
        self.planner = planner if planner is not None else BatchPlanner()

    def get_primary_key(self, conn, schema, table):
        pk_columns = load_table_pk(conn, schema, table)
        if len(pk_columns) != 1:
            raise NoPrimaryKeyError(schema, table, pk_columns)
        return pk_columns[0]

    def fetch_pk_page(self, conn, schema, table, pk_column, batch_size, offset):
        cur = conn.cursor()
        cur.execute(render_pk_page_statement(schema, table, pk_column), (batch_size, offset))
        return [r[0] for r in cur.fetchall()]

    def build_update(self, schema, table_cfg, pk_column, pk_value):
        """
        Build the UPDATE for one row.

        Returns:
            Tuple of (sql, params); params follow column order with the
            primary key value last
        """
        params = []
        for rule in table_cfg.columns:
            gen = parse_generator_type(rule.type)
            params.append(self.value_generator.generate(gen.category, gen.method, rule.locale_code))
        params.append(pk_value)

        sql = render_update_statement(
            schema, table_cfg.name, [rule.name for rule in table_cfg.columns], pk_column)
        return sql, params

    def process_batch(self, conn, schema, table_cfg, pk_column, plan, batch_index):
        """
        Anonymize one page of rows in a single transaction.

        Args:
            conn: PostgreSQL connection in autocommit mode
            schema: Schema name
            table_cfg: TableConfig
            pk_column: Primary key column name
            plan: BatchPlan for the table
            batch_index: Zero-based batch number

        Returns:
            Number of rows in the page, or None when the page is empty

        Raises:
            MutationFailedError: any statement failed; the batch was rolled back
        """
        offset = batch_index * plan.batch_size
        print("Processing batch {0}/{1} (offset: {2})".format(
            batch_index + 1, plan.total_batches, offset))

        pk_values = self.fetch_pk_page(
            conn, schema, table_cfg.name, pk_column, plan.batch_size, offset)
        if not pk_values:
            debug_print("{0}.{1}: empty page at offset {2}, stopping".format(
                schema, table_cfg.name, offset))
            return None

        cur = conn.cursor()
        cur.execute("BEGIN READ ONLY" if self.dry_run else "BEGIN")
        try:
            for pk_value in pk_values:
                sql, params = self.build_update(schema, table_cfg, pk_column, pk_value)
                if self.dry_run:
                    debug_print("Would execute: {0} with params: {1}".format(sql, params))
                else:
                    cur.execute(sql, params)

            if self.dry_run:
                cur.execute("ROLLBACK")
                print("Batch {0} would have been processed (dry run).".format(batch_index + 1))
            else:
                cur.execute("COMMIT")
                print("Batch {0} committed successfully.".format(batch_index + 1))
        except Exception as e:
            self._rollback(conn, schema, table_cfg.name, batch_index)
            raise MutationFailedError(schema, table_cfg.name, batch_index, e) from e

        return len(pk_values)

    def _rollback(self, conn, schema, table, batch_index):
        try:
            conn.cursor().execute("ROLLBACK")
        except Exception as e:
            print("Error: ROLLBACK of batch {0} on {1}.{2} failed: {3}".format(
                batch_index + 1, schema, table, e), file=sys.stderr)

    def anonymize_table(self, conn, schema, table_cfg):
        """
        Run every batch of one table in primary key order.

        Returns:
            TableResult
        """
        print("Anonymizing table: {0}.{1}".format(schema, table_cfg.name))

        plan = self.planner.plan(conn, schema, table_cfg)
        print("Table has {0} rows.".format(plan.total_rows))

        pk_column = None
        batches = rows_updated = 0
        for batch_index, _ in self.planner.batch_offsets(plan):
            if pk_column is None:
                pk_column = self.get_primary_key(conn, schema, table_cfg.name)
                if any(rule.name == pk_column for rule in table_cfg.columns):
                    raise PrimaryKeyColumnError(schema, table_cfg.name, pk_column)

            count = self.process_batch(conn, schema, table_cfg, pk_column, plan, batch_index)
            if count is None:
                break
            batches += 1
            rows_updated += count

        return TableResult(schema, table_cfg.name, plan.total_rows, batches, rows_updated)
