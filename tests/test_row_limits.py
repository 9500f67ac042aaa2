"""Tests for row limit rewriting per dialect."""

import unittest

from querygate.row_limits import plan_row_limit


class TestLimitClause(unittest.TestCase):

    def test_appends_limit_with_one_extra_row(self):
        plan = plan_row_limit("SELECT * FROM users", 5)
        self.assertTrue(plan.rewritten)
        self.assertEqual(plan.sql, "SELECT * FROM users LIMIT 6")
        self.assertEqual(plan.skip_rows, 0)
        self.assertEqual(plan.max_rows, 6)

    def test_trailing_semicolon_is_dropped(self):
        plan = plan_row_limit("SELECT * FROM users;", 5, dialect="sqlite")
        self.assertEqual(plan.sql, "SELECT * FROM users LIMIT 6")

    def test_offset_is_pushed_down(self):
        plan = plan_row_limit("SELECT id FROM users ORDER BY id", 5, offset=10)
        self.assertEqual(plan.sql, "SELECT id FROM users ORDER BY id LIMIT 6 OFFSET 10")
        self.assertEqual(plan.skip_rows, 0)

    def test_larger_existing_limit_is_shrunk(self):
        plan = plan_row_limit("SELECT id FROM users LIMIT 1000", 5)
        self.assertTrue(plan.rewritten)
        self.assertEqual(plan.sql, "SELECT id FROM users LIMIT 6")

    def test_smaller_existing_limit_is_kept(self):
        plan = plan_row_limit("SELECT id FROM users LIMIT 3", 5)
        self.assertFalse(plan.rewritten)
        self.assertEqual(plan.sql, "SELECT id FROM users LIMIT 3")
        self.assertEqual(plan.max_rows, 6)

    def test_existing_limit_with_offset_skips_client_side(self):
        plan = plan_row_limit("SELECT id FROM users LIMIT 1000 OFFSET 20", 5, offset=2)
        self.assertEqual(plan.sql, "SELECT id FROM users LIMIT 8 OFFSET 20")
        self.assertEqual(plan.skip_rows, 2)
        self.assertEqual(plan.max_rows, 8)

    def test_limit_inside_subquery_does_not_count(self):
        plan = plan_row_limit("SELECT * FROM (SELECT id FROM users LIMIT 3) AS t", 5)
        self.assertEqual(plan.sql, "SELECT * FROM (SELECT id FROM users LIMIT 3) AS t LIMIT 6")

    def test_cte_query_is_rewritten(self):
        plan = plan_row_limit("WITH t AS (SELECT id FROM users) SELECT id FROM t", 5)
        self.assertEqual(plan.sql, "WITH t AS (SELECT id FROM users) SELECT id FROM t LIMIT 6")

    def test_mutating_statement_is_untouched(self):
        plan = plan_row_limit("DELETE FROM users", 5, offset=3)
        self.assertFalse(plan.rewritten)
        self.assertEqual(plan.sql, "DELETE FROM users")
        self.assertEqual(plan.skip_rows, 3)

    def test_invalid_statement_is_untouched(self):
        plan = plan_row_limit("SELECT * FORM users", 5)
        self.assertFalse(plan.rewritten)
        self.assertEqual(plan.sql, "SELECT * FORM users")

    def test_argument_checks(self):
        with self.assertRaises(ValueError):
            plan_row_limit("SELECT 1", 0)
        with self.assertRaises(ValueError):
            plan_row_limit("SELECT 1", 5, offset=-1)
        with self.assertRaises(ValueError):
            plan_row_limit("SELECT 1", 5, dialect="rownum")


class TestTopDialect(unittest.TestCase):

    def test_inserts_top_after_select(self):
        plan = plan_row_limit("SELECT id FROM users", 5, dialect="tsql")
        self.assertEqual(plan.sql, "SELECT TOP 6 id FROM users")
        self.assertEqual(plan.skip_rows, 0)

    def test_top_goes_after_distinct(self):
        plan = plan_row_limit("SELECT DISTINCT id FROM users", 5, dialect="tsql")
        self.assertEqual(plan.sql, "SELECT DISTINCT TOP 6 id FROM users")

    def test_offset_switches_to_fetch(self):
        plan = plan_row_limit("SELECT id FROM users ORDER BY id", 5, offset=2, dialect="tsql")
        self.assertTrue(plan.rewritten)
        self.assertIn("OFFSET 2", plan.sql)
        self.assertIn("FETCH FIRST 6 ROWS ONLY", plan.sql)
        self.assertNotIn("TOP", plan.sql)
        self.assertEqual(plan.skip_rows, 0)

    def test_larger_existing_top_is_shrunk(self):
        plan = plan_row_limit("SELECT TOP 1000 id FROM users", 5, dialect="tsql")
        self.assertEqual(plan.sql, "SELECT TOP 6 id FROM users")


class TestFetchDialect(unittest.TestCase):

    def test_appends_fetch_first(self):
        plan = plan_row_limit("SELECT id FROM users", 5, dialect="oracle")
        self.assertEqual(plan.sql, "SELECT id FROM users FETCH FIRST 6 ROWS ONLY")

    def test_offset_rows_fetch_first(self):
        plan = plan_row_limit("SELECT id FROM users ORDER BY id", 5, offset=3, dialect="oracle")
        self.assertEqual(plan.sql, "SELECT id FROM users ORDER BY id OFFSET 3 ROWS FETCH FIRST 6 ROWS ONLY")
        self.assertEqual(plan.skip_rows, 0)

    def test_dialects_agree_on_fetch_bound(self):
        for dialect in (None, "sqlite", "postgres", "tsql", "oracle", "mysql"):
            plan = plan_row_limit("SELECT id FROM users", 10, dialect=dialect)
            self.assertTrue(plan.rewritten, dialect)
            self.assertEqual(plan.max_rows - plan.skip_rows, 11)


class TestBindPlaceholders(unittest.TestCase):

    def test_positional_placeholders_become_named_binds(self):
        plan = plan_row_limit("SELECT name FROM users WHERE id = ? AND age > ?", 5)
        self.assertEqual(plan.sql, "SELECT name FROM users WHERE id = :p1 AND age > :p2 LIMIT 6")

    def test_named_placeholders_are_kept(self):
        plan = plan_row_limit("SELECT name FROM users WHERE id = :id", 5, dialect="sqlite")
        self.assertEqual(plan.sql, "SELECT name FROM users WHERE id = :id LIMIT 6")

    def test_pyformat_placeholder_in_postgres(self):
        plan = plan_row_limit("SELECT name FROM users WHERE id = %(id)s", 5, dialect="postgres")
        self.assertIn("id = :id", plan.sql)
        self.assertNotIn("%", plan.sql)

    def test_statement_without_rewrite_still_binds(self):
        plan = plan_row_limit("DELETE FROM users WHERE id = ?", 5)
        self.assertFalse(plan.rewritten)
        self.assertEqual(plan.sql, "DELETE FROM users WHERE id = :p1")


if __name__ == '__main__':
    unittest.main()
