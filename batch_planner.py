#!/usr/bin/env python3
"""Batch planning module for sizing per-transaction row pages"""
from anonymize_database_utils import (
    debug_print, render_count_statement, BatchPlan,
    DEFAULT_BATCH_SIZE, LARGE_TABLE_BATCH_SIZE, LARGE_TABLE_THRESHOLD
)


def choose_batch_size(total_rows, batch_size=None):
    """Explicit override wins, then the large-table size, then the default"""
    if batch_size:
        return batch_size
    if total_rows >= LARGE_TABLE_THRESHOLD:
        return LARGE_TABLE_BATCH_SIZE
    return DEFAULT_BATCH_SIZE


def count_batches(total_rows, batch_size):
    if batch_size <= 0:
        raise ValueError("batch size must be positive, got {0}".format(batch_size))
    return -(-total_rows // batch_size)


def plan_batches(total_rows, batch_size=None):
    size = choose_batch_size(total_rows, batch_size)
    return BatchPlan(total_rows, size, count_batches(total_rows, size))


def count_rows(conn, schema, table):
    cur = conn.cursor()
    cur.execute(render_count_statement(schema, table))
    return int(cur.fetchone()[0])


class BatchPlanner:
    """
    Splits a table into primary-key ordered pages.

    Each page becomes one transaction, which bounds lock duration and
    memory. Large tables get larger pages to cut per-batch overhead.
    """

    def count_rows(self, conn, schema, table):
        return count_rows(conn, schema, table)

    def plan(self, conn, schema, table_cfg):
        """
        Build the batch plan for one configured table.

        Args:
            conn: PostgreSQL connection
            schema: Schema name
            table_cfg: TableConfig (batch_size may override the default)

        Returns:
            BatchPlan
        """
        total_rows = self.count_rows(conn, schema, table_cfg.name)
        plan = plan_batches(total_rows, table_cfg.batch_size)
        debug_print("{0}.{1}: {2}".format(schema, table_cfg.name, plan))
        return plan

    def batch_offsets(self, plan):
        """Yield (batch_index, offset) for every batch in the plan"""
        for batch_index in range(plan.total_batches):
            yield batch_index, batch_index * plan.batch_size
