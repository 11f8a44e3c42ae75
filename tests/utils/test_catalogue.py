# -*- coding: utf-8 -*-
# test_catalogue.py: Unit tests for the check catalogue and its integrity rules

import os
import tempfile
import unittest

from pg_health_report.plugins.postgres.reports.default import CHECKS
from pg_health_report.utils.catalogue import Check, CheckCatalogue, ResultSet, load_catalogue
from pg_health_report.utils.errors import ConfigurationError


class TestBuiltInCatalogue(unittest.TestCase):
    def setUp(self):
        self.catalogue = load_catalogue()

    def test_ids_strictly_increasing(self):
        ids = [check.id for check in self.catalogue.all_checks()]
        self.assertEqual(ids, sorted(set(ids)))
        self.assertEqual(ids[0], 1)

    def test_titles_unique(self):
        titles = [check.title for check in self.catalogue.all_checks()]
        self.assertEqual(len(titles), len(set(titles)))

    def test_keeps_definition_order(self):
        self.assertEqual(
            [check.title for check in self.catalogue.all_checks()],
            [check.title for check in CHECKS],
        )
        self.assertEqual(len(self.catalogue), 17)
        self.assertEqual(self.catalogue.all_checks()[0].title, 'Bloat Info (Dead Tuple %)')
        self.assertEqual(self.catalogue.all_checks()[-1].title, 'Tables Without Primary or Foreign Key')

    def test_every_check_has_a_single_statement(self):
        for check in self.catalogue.all_checks():
            with self.subTest(check=check.title):
                self.assertTrue(check.has_query)
                self.assertFalse(check.query.rstrip().endswith(';'))
                self.assertNotIn(' LIMIT ', check.query.upper())

    def test_every_check_is_tagged(self):
        for check in self.catalogue.all_checks():
            with self.subTest(check=check.title):
                self.assertIsInstance(check.tags, frozenset)
                self.assertTrue(check.tags)


class TestCheckCatalogue(unittest.TestCase):
    def test_duplicate_title_is_rejected(self):
        checks = [
            Check(1, 'DB Sizes', 'SELECT 1', {'size'}),
            Check(2, 'DB Sizes', 'SELECT 2', {'size'}),
        ]
        with self.assertRaises(ConfigurationError):
            CheckCatalogue(checks)

    def test_non_increasing_id_is_rejected(self):
        checks = [
            Check(2, 'Bloat Info', 'SELECT 1', {'bloat'}),
            Check(2, 'DB Sizes', 'SELECT 2', {'size'}),
        ]
        with self.assertRaises(ConfigurationError):
            CheckCatalogue(checks)

    def test_zero_id_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            CheckCatalogue([Check(0, 'Bloat Info', 'SELECT 1')])

    def test_empty_title_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            CheckCatalogue([Check(1, '  ', 'SELECT 1')])

    def test_non_check_entry_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            CheckCatalogue([{'title': 'Bloat Info', 'query': 'SELECT 1'}])

    def test_empty_query_warns_but_loads(self):
        checks = [
            Check(1, 'Bloat Info', 'SELECT 1', {'bloat'}),
            Check(2, 'Advisory Locks', '   ', {'locks'}),
        ]
        with self.assertLogs('pg_health_report.utils.catalogue', level='WARNING') as logs:
            catalogue = CheckCatalogue(checks)
        self.assertEqual(len(catalogue), 2)
        self.assertFalse(catalogue.all_checks()[1].has_query)
        self.assertIn("Missing SQL for 'Advisory Locks'", logs.output[0])

    def test_tags_are_frozen(self):
        check = Check(1, 'Bloat Info', 'SELECT 1', ['bloat', 'vacuum'])
        self.assertEqual(check.tags, frozenset({'bloat', 'vacuum'}))

    def test_iteration_matches_all_checks(self):
        checks = [Check(1, 'A', 'SELECT 1'), Check(5, 'B', 'SELECT 2')]
        catalogue = CheckCatalogue(checks)
        self.assertEqual(tuple(catalogue), catalogue.all_checks())


class TestResultSet(unittest.TestCase):
    def test_rows_are_tuples(self):
        result = ResultSet(columns=['a', 'b'], rows=[['1', '2']])
        self.assertEqual(result.columns, ('a', 'b'))
        self.assertEqual(result.rows, (('1', '2'),))

    def test_empty_result_keeps_columns(self):
        result = ResultSet(columns=['datname'])
        self.assertEqual(result.columns, ('datname',))
        self.assertEqual(result.rows, ())


class TestLoadCatalogue(unittest.TestCase):
    def _write(self, content):
        handle, path = tempfile.mkstemp(suffix='.py')
        with os.fdopen(handle, 'w') as f:
            f.write(content)
        self.addCleanup(os.remove, path)
        return path

    def test_loads_custom_file(self):
        path = self._write(
            "from pg_health_report.utils.catalogue import Check\n"
            "CHECKS = [\n"
            "    Check(1, 'Bloat Info', 'SELECT 1', {'bloat'}),\n"
            "    Check(2, 'DB Sizes', 'SELECT 2', {'size'}),\n"
            "]\n"
        )
        catalogue = load_catalogue(path)
        self.assertEqual([c.title for c in catalogue], ['Bloat Info', 'DB Sizes'])

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_catalogue('/nonexistent/catalogue.py')

    def test_file_without_checks(self):
        path = self._write("REPORT_SECTIONS = []\n")
        with self.assertRaises(ConfigurationError):
            load_catalogue(path)

    def test_file_that_fails_to_import(self):
        path = self._write("raise RuntimeError('broken')\n")
        with self.assertRaises(ConfigurationError):
            load_catalogue(path)


if __name__ == '__main__':
    unittest.main()
