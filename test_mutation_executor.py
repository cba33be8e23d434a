#!/usr/bin/env python3
"""Unit tests for MutationExecutor batch transactions"""
import itertools
import unittest
from io import StringIO
from unittest.mock import patch

from mutation_executor import MutationExecutor
from batch_planner import BatchPlanner
from anonymize_database_utils import (
    ColumnRule, TableConfig, BatchPlan, TableResult,
    NoPrimaryKeyError, PrimaryKeyColumnError, MutationFailedError
)
from fake_postgres import FakeDatabase, FakeTable, FakeConnection


class CountingValueGenerator:
    """Deterministic generator: "<category>.<method>-<n>" with a global counter"""

    def __init__(self):
        self.counter = itertools.count(1)
        self.calls = []

    def generate(self, category, method, locale_code=None):
        self.calls.append((category, method, locale_code))
        return "{0}.{1}-{2}".format(category, method, next(self.counter))


def make_users(n):
    return [{"id": i, "email": "user{0}@corp.example".format(i), "first_name": "Name{0}".format(i)}
            for i in range(1, n + 1)]


EMAIL_ONLY = TableConfig("users", (ColumnRule("email", "internet.email", None),), None)


class TestBuildUpdate(unittest.TestCase):
    """Statement construction"""

    def test_column_order_and_pk_last(self):
        gen = CountingValueGenerator()
        executor = MutationExecutor(gen)
        table_cfg = TableConfig("users", (
            ColumnRule("first_name", "person.first_name", "th"),
            ColumnRule("email", "internet.email", None),
        ), None)
        sql, params = executor.build_update("public", table_cfg, "id", 42)
        self.assertEqual(
            sql, 'UPDATE "public"."users" SET "first_name" = %s, "email" = %s WHERE "id" = %s')
        self.assertEqual(params, ["person.first_name-1", "internet.email-2", 42])
        self.assertEqual(gen.calls, [("person", "first_name", "th"), ("internet", "email", None)])


class ExecutorTestCase(unittest.TestCase):

    rows = 1500

    def setUp(self):
        self.db = FakeDatabase({
            ("public", "users"): FakeTable(
                {"id": "integer", "email": "text", "first_name": "text"}, ["id"], make_users(self.rows)),
            ("public", "audit"): FakeTable({"note": "text"}, [], [{"note": "x"}]),
            ("public", "empty_audit"): FakeTable({"note": "text"}, [], []),
        })
        self.conn = FakeConnection(self.db)
        self.conn.autocommit = True
        self.generator = CountingValueGenerator()
        self.stdout = patch("sys.stdout", new_callable=StringIO)
        self.stdout.start()

    def tearDown(self):
        self.stdout.stop()

    def statements(self, prefix):
        return [q for q, _ in self.db.executed if q.startswith(prefix)]


class TestAnonymizeTable(ExecutorTestCase):
    """Full table passes"""

    def test_round_trip_two_batches(self):
        before = self.db.snapshot("public", "users")
        executor = MutationExecutor(self.generator)

        result = executor.anonymize_table(self.conn, "public", EMAIL_ONLY)

        self.assertEqual(result, TableResult("public", "users", 1500, 2, 1500))
        self.assertEqual(len(self.statements('SELECT "id"')), 2)
        self.assertEqual(len(self.statements("UPDATE")), 1500)
        self.assertEqual(len(self.statements("BEGIN")), 2)
        self.assertEqual(len(self.statements("COMMIT")), 2)
        self.assertEqual(self.statements("ROLLBACK"), [])

        after = self.db.snapshot("public", "users")
        self.assertEqual(len(after), len(before))
        self.assertEqual([r["id"] for r in after], [r["id"] for r in before])
        for old, new in zip(before, after):
            self.assertNotEqual(old["email"], new["email"])
            self.assertEqual(old["first_name"], new["first_name"])

        # Every row updated exactly once
        updated_pks = [p[-1] for q, p in self.db.executed if q.startswith("UPDATE")]
        self.assertEqual(sorted(updated_pks), list(range(1, 1501)))

    def test_page_offsets(self):
        MutationExecutor(self.generator).anonymize_table(self.conn, "public", EMAIL_ONLY)
        pages = [p for q, p in self.db.executed if q.startswith('SELECT "id"')]
        self.assertEqual(pages, [(1000, 0), (1000, 1000)])

    def test_batch_size_override(self):
        table_cfg = EMAIL_ONLY._replace(batch_size=400)
        result = MutationExecutor(self.generator).anonymize_table(self.conn, "public", table_cfg)
        self.assertEqual(result.batches, 4)
        self.assertEqual(len(self.statements("COMMIT")), 4)

    def test_dry_run_leaves_rows_untouched(self):
        before = self.db.snapshot("public", "users")
        table_cfg = EMAIL_ONLY._replace(batch_size=300)

        result = MutationExecutor(self.generator, dry_run=True).anonymize_table(
            self.conn, "public", table_cfg)

        self.assertEqual(result.batches, 5)
        self.assertEqual(result.rows_updated, 1500)
        self.assertEqual(self.db.snapshot("public", "users"), before)
        self.assertEqual(self.statements("UPDATE"), [])
        self.assertEqual(self.statements("COMMIT"), [])
        self.assertEqual(self.statements("BEGIN READ ONLY"), self.statements("BEGIN"))
        self.assertEqual(len(self.statements("ROLLBACK")), 5)
        # Values are still computed
        self.assertEqual(len(self.generator.calls), 1500)

    def test_empty_table_is_a_no_op(self):
        self.db.tables[("public", "users")].rows = []
        result = MutationExecutor(self.generator).anonymize_table(self.conn, "public", EMAIL_ONLY)
        self.assertEqual(result, TableResult("public", "users", 0, 0, 0))
        self.assertEqual(self.statements("BEGIN"), [])
        # No batch means the primary key is never looked up
        self.assertEqual([q for q, _ in self.db.executed if "table_constraints" in q], [])

    def test_empty_table_without_primary_key_is_a_no_op(self):
        table_cfg = TableConfig("empty_audit", (ColumnRule("note", "lorem.word", None),), None)
        result = MutationExecutor(self.generator).anonymize_table(self.conn, "public", table_cfg)
        self.assertEqual(result.batches, 0)

    def test_primary_key_looked_up_once(self):
        MutationExecutor(self.generator).anonymize_table(
            self.conn, "public", EMAIL_ONLY._replace(batch_size=100))
        lookups = [q for q, _ in self.db.executed if "table_constraints" in q]
        self.assertEqual(len(lookups), 1)

    def test_table_without_primary_key_fails_before_any_write(self):
        table_cfg = TableConfig("audit", (ColumnRule("note", "lorem.word", None),), None)
        with self.assertRaises(NoPrimaryKeyError):
            MutationExecutor(self.generator).anonymize_table(self.conn, "public", table_cfg)
        self.assertEqual(self.db.snapshot("public", "audit"), [{"note": "x"}])
        self.assertEqual(self.statements("BEGIN"), [])

    def test_rule_on_primary_key_fails_before_any_write(self):
        """Rewriting the paging key would skip some rows and revisit others"""
        self.db.tables[("public", "users")].rows = make_users(10)
        before = self.db.snapshot("public", "users")
        table_cfg = TableConfig("users", (
            ColumnRule("email", "internet.email", None),
            ColumnRule("id", "number.random_int", None),
        ), 3)

        with self.assertRaises(PrimaryKeyColumnError) as ctx:
            MutationExecutor(self.generator).anonymize_table(self.conn, "public", table_cfg)

        self.assertEqual(ctx.exception.column, "id")
        self.assertEqual(self.db.snapshot("public", "users"), before)
        self.assertEqual(self.statements("BEGIN"), [])
        self.assertEqual(self.statements("UPDATE"), [])

    def test_stops_on_empty_page(self):
        class OvercountingPlanner(BatchPlanner):
            def count_rows(self, conn, schema, table):
                return 3000

        executor = MutationExecutor(self.generator, planner=OvercountingPlanner())
        result = executor.anonymize_table(self.conn, "public", EMAIL_ONLY)
        self.assertEqual(result, TableResult("public", "users", 3000, 2, 1500))
        self.assertEqual(len(self.statements('SELECT "id"')), 3)
        self.assertEqual(len(self.statements("BEGIN")), 2)


class TestBatchAtomicity(ExecutorTestCase):
    """A failing row rolls back its whole batch and nothing after it runs"""

    rows = 2500

    def test_failure_rolls_back_only_the_current_batch(self):
        before = {r["id"]: r for r in self.db.snapshot("public", "users")}
        self.db.fail_on_pk.add(1500)  # row 500 of batch 2

        with self.assertRaises(MutationFailedError) as ctx:
            MutationExecutor(self.generator).anonymize_table(self.conn, "public", EMAIL_ONLY)

        self.assertEqual(ctx.exception.batch_index, 1)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        after = {r["id"]: r for r in self.db.snapshot("public", "users")}
        for pk in range(1, 1001):
            self.assertNotEqual(after[pk]["email"], before[pk]["email"])
        for pk in range(1001, 2501):
            self.assertEqual(after[pk], before[pk])

        self.assertEqual(len(self.statements("COMMIT")), 1)
        self.assertEqual(len(self.statements("ROLLBACK")), 1)
        # The third batch is never fetched
        self.assertEqual(len(self.statements('SELECT "id"')), 2)

    def test_generator_failure_rolls_back(self):
        class ExplodingGenerator(CountingValueGenerator):
            def generate(self, category, method, locale_code=None):
                value = super().generate(category, method, locale_code)
                if len(self.calls) == 10:
                    raise ValueError("generator exploded")
                return value

        before = self.db.snapshot("public", "users")
        with self.assertRaises(MutationFailedError) as ctx:
            MutationExecutor(ExplodingGenerator()).anonymize_table(self.conn, "public", EMAIL_ONLY)
        self.assertEqual(ctx.exception.batch_index, 0)
        self.assertEqual(self.db.snapshot("public", "users"), before)
        self.assertFalse(self.conn.in_transaction)

    def test_process_batch_returns_page_size(self):
        executor = MutationExecutor(self.generator)
        plan = BatchPlan(2500, 1000, 3)
        self.assertEqual(executor.process_batch(self.conn, "public", EMAIL_ONLY, "id", plan, 2), 500)
        self.assertIsNone(executor.process_batch(self.conn, "public", EMAIL_ONLY, "id", plan, 3))


class TestGetPrimaryKey(ExecutorTestCase):

    def test_single_column(self):
        self.assertEqual(MutationExecutor(self.generator).get_primary_key(self.conn, "public", "users"), "id")

    def test_composite_key(self):
        self.db.tables[("public", "users")].pk = ["id", "email"]
        with self.assertRaises(NoPrimaryKeyError):
            MutationExecutor(self.generator).get_primary_key(self.conn, "public", "users")


if __name__ == '__main__':
    unittest.main()
