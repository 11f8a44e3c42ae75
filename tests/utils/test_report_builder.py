# -*- coding: utf-8 -*-
# test_report_builder.py: Unit tests for report assembly

import io
import json
import threading
import time
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from pg_health_report.output_handlers.report_sink import StreamSink
from pg_health_report.utils.catalogue import Check, CheckCatalogue, ResultSet
from pg_health_report.utils.errors import (
    RunnerConnectivityError,
    RunnerStatementError,
    RunnerTimeoutError,
    SinkError,
)
from pg_health_report.utils.mode_filter import ReportMode
from pg_health_report.utils.report_builder import ReportBuilder

FIXED_TIME = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


def three_checks():
    return CheckCatalogue([
        Check(1, 'Bloat Info', 'SELECT bloat', {'bloat'}),
        Check(2, 'DB Sizes', 'SELECT sizes', {'size'}),
        Check(3, 'Replication Lag', 'SELECT lag', {'replication-lag'}),
    ])


def one_row(value='1'):
    return ResultSet(columns=['value'], rows=[[value]])


class ReportBuilderTestCase(unittest.TestCase):
    def setUp(self):
        self.runner = MagicMock()
        self.runner.run.return_value = one_row()
        self.stream = io.StringIO()
        self.sink = StreamSink(self.stream)

    def build(self, catalogue=None, mode='full', report_format='json', **kwargs):
        kwargs.setdefault('clock', lambda: FIXED_TIME)
        builder = ReportBuilder(
            runner=self.runner,
            catalogue=catalogue or three_checks(),
            mode=mode,
            report_format=report_format,
            sink=kwargs.pop('sink', self.sink),
            target='postgres@db1:5432/app',
            **kwargs
        )
        return builder.build()


class TestReportBuilder(ReportBuilderTestCase):
    def test_recommended_json_keeps_critical_checks_in_order(self):
        report = self.build(mode='recommended', critical_tags={'bloat', 'replication-lag'})
        document = json.loads(self.stream.getvalue())
        self.assertEqual(list(document), ['Bloat Info', 'Replication Lag'])
        self.assertNotIn('DB Sizes', document)
        self.assertEqual([s.title for s in report.sections], ['Bloat Info', 'Replication Lag'])
        self.assertEqual(report.mode, ReportMode.RECOMMENDED)

    def test_full_runs_every_check(self):
        self.build(mode='full')
        self.assertEqual(list(json.loads(self.stream.getvalue())), ['Bloat Info', 'DB Sizes', 'Replication Lag'])
        self.assertEqual(self.runner.run.call_count, 3)

    def test_runner_gets_format_row_limit_and_timeout(self):
        self.build(report_format='html', timeout=30)
        self.runner.run.assert_any_call('SELECT bloat', 50, 30)
        self.runner.run.reset_mock()
        self.stream.seek(0)
        self.stream.truncate()
        self.build(report_format='text')
        self.runner.run.assert_any_call('SELECT lag', 10, None)

    def test_zero_rows_still_produce_a_section(self):
        self.runner.run.return_value = ResultSet(columns=['client_addr', 'lag'])
        self.build(report_format='json')
        document = json.loads(self.stream.getvalue())
        self.assertEqual(document['Replication Lag'], [])

    def test_zero_rows_html_table(self):
        self.runner.run.return_value = ResultSet(columns=['client_addr'])
        self.build(report_format='html')
        output = self.stream.getvalue()
        self.assertEqual(output.count('<table>'), 3)
        self.assertEqual(output.count('<th>client_addr</th>'), 3)

    def test_failed_check_does_not_stop_the_report(self):
        self.runner.run.side_effect = [
            one_row('a'),
            RunnerStatementError('relation "pg_stat_statements" does not exist'),
            one_row('c'),
        ]
        report = self.build(report_format='html')
        output = self.stream.getvalue()
        self.assertEqual(self.runner.run.call_count, 3)
        self.assertEqual([s.failed for s in report.sections], [False, True, False])
        self.assertIn('Check failed: statement: relation &quot;pg_stat_statements&quot; does not exist', output)
        self.assertIn('<td>c</td>', output)
        self.assertFalse(report.truncated)

    def test_timeout_is_section_local(self):
        self.runner.run.side_effect = [
            one_row(), RunnerTimeoutError('cancelled'), one_row()
        ]
        report = self.build(report_format='json')
        document = json.loads(self.stream.getvalue())
        self.assertEqual(document['DB Sizes'], [{'status': 'failed', 'error': 'timeout: cancelled'}])
        self.assertEqual(len(report.failed_sections), 1)

    def test_unexpected_runner_exception_is_section_local(self):
        self.runner.run.side_effect = [one_row(), ValueError('driver bug'), one_row()]
        with self.assertLogs('pg_health_report.utils.report_builder', level='ERROR'):
            report = self.build(report_format='text')
        self.assertIn('FAILED: runner: driver bug', self.stream.getvalue())
        self.assertEqual(len(report.sections), 3)

    def test_formatter_defect_is_section_local(self):
        self.runner.run.side_effect = [
            ResultSet(columns=['a', 'b'], rows=[['only one']]),
            one_row(),
            one_row(),
        ]
        with self.assertLogs('pg_health_report.utils.report_builder', level='ERROR'):
            report = self.build(report_format='text')
        self.assertTrue(report.sections[0].failed)
        self.assertTrue(report.sections[0].error.startswith('internal:'))
        self.assertFalse(report.sections[1].failed)

    def test_unreachable_target_on_first_check_aborts(self):
        self.runner.run.side_effect = RunnerConnectivityError('could not connect')
        sink = MagicMock()
        with self.assertRaises(RunnerConnectivityError):
            self.build(sink=sink)
        sink.abort.assert_called_once()
        sink.close.assert_not_called()
        self.assertEqual(self.runner.run.call_count, 1)

    def test_lost_connection_later_truncates_report(self):
        self.runner.run.side_effect = [
            one_row(),
            RunnerConnectivityError('server closed the connection', connection_lost=True),
            one_row(),
        ]
        report = self.build(report_format='html')
        output = self.stream.getvalue()
        self.assertTrue(report.truncated)
        self.assertEqual(len(report.sections), 2)
        self.assertTrue(report.sections[1].failed)
        self.assertEqual(self.runner.run.call_count, 2)
        self.assertEqual(report.truncation_reason, "connection lost after 'DB Sizes'")
        self.assertIn('Report truncated: connection lost after', output)
        self.assertTrue(output.rstrip().endswith('</html>'))

    def test_transient_connectivity_error_later_is_section_local(self):
        self.runner.run.side_effect = [
            one_row(),
            RunnerConnectivityError('remote server unavailable'),
            one_row(),
        ]
        report = self.build(report_format='json')
        self.assertFalse(report.truncated)
        self.assertEqual(self.runner.run.call_count, 3)
        self.assertEqual(report.sections[1].error, 'connection: remote server unavailable')

    def test_missing_query_is_skipped_with_warning(self):
        catalogue = CheckCatalogue([
            Check(1, 'Bloat Info', 'SELECT bloat', {'bloat'}),
            Check(2, 'Advisory Locks', '', {'locks'}),
        ])
        with self.assertLogs('pg_health_report.utils.report_builder', level='WARNING') as logs:
            report = self.build(catalogue=catalogue)
        self.assertEqual([s.title for s in report.sections], ['Bloat Info'])
        self.assertNotIn('Advisory Locks', self.stream.getvalue())
        self.assertTrue(any("Missing SQL for 'Advisory Locks'" in line for line in logs.output))
        self.runner.run.assert_called_once()

    def test_cancel_before_start(self):
        event = threading.Event()
        event.set()
        report = self.build(report_format='text', cancel_event=event)
        self.assertTrue(report.truncated)
        self.assertEqual(report.truncation_reason, 'cancelled')
        self.assertEqual(report.sections, ())
        self.runner.run.assert_not_called()
        self.assertIn('** Report truncated: cancelled **', self.stream.getvalue())

    def test_cancel_mid_report_keeps_finished_sections(self):
        event = threading.Event()

        def run_then_cancel(query, row_limit, timeout):
            event.set()
            return one_row()

        self.runner.run.side_effect = run_then_cancel
        report = self.build(report_format='json', cancel_event=event)
        self.assertEqual([s.title for s in report.sections], ['Bloat Info'])
        self.assertEqual(list(json.loads(self.stream.getvalue())), ['Bloat Info'])

    def test_keyboard_interrupt_flushes_partial_report(self):
        self.runner.run.side_effect = [one_row(), KeyboardInterrupt()]
        report = self.build(report_format='html')
        self.assertTrue(report.truncated)
        self.assertEqual(report.truncation_reason, 'interrupted by operator')
        self.assertIn('<h2>Bloat Info</h2>', self.stream.getvalue())
        self.assertIn('Report truncated: interrupted by operator', self.stream.getvalue())

    def test_output_is_deterministic(self):
        self.runner.run.side_effect = lambda query, row_limit, timeout: one_row(query)
        self.build(report_format='html')
        first = self.stream.getvalue()
        self.stream.seek(0)
        self.stream.truncate()
        self.build(report_format='html')
        self.assertEqual(first, self.stream.getvalue())

    def test_header_states_target_mode_and_time(self):
        report = self.build(report_format='text', mode='recommended', critical_tags={'bloat'})
        lines = self.stream.getvalue().splitlines()
        self.assertEqual(lines[0], 'PostgreSQL Master Health Check Report - 2026-10-18 09:00:00 UTC')
        self.assertEqual(lines[1], 'Target: postgres@db1:5432/app | Mode: recommended')
        self.assertEqual(report.generated_at, FIXED_TIME)
        self.assertEqual(report.target, 'postgres@db1:5432/app')
        self.assertEqual(report.location, '<stream>')

    def test_sink_error_aborts(self):
        sink = MagicMock()
        sink.write.side_effect = SinkError('disk full')
        with self.assertRaises(SinkError):
            self.build(sink=sink)
        sink.abort.assert_called_once()

    def test_interrupt_while_writing_header_discards_output(self):
        sink = MagicMock()
        sink.write.side_effect = KeyboardInterrupt()
        with self.assertRaises(KeyboardInterrupt):
            self.build(sink=sink, report_format='html')
        sink.abort.assert_called_once()
        self.runner.run.assert_not_called()


class TestConcurrentReportBuilder(ReportBuilderTestCase):
    def test_results_keep_catalogue_order(self):
        delays = {'SELECT bloat': 0.2, 'SELECT sizes': 0.1, 'SELECT lag': 0.0}

        def slow_run(query, row_limit, timeout):
            time.sleep(delays[query])
            return one_row(query)

        self.runner.run.side_effect = slow_run
        report = self.build(report_format='json', max_workers=3)
        document = json.loads(self.stream.getvalue())
        self.assertEqual(list(document), ['Bloat Info', 'DB Sizes', 'Replication Lag'])
        self.assertEqual(document['Bloat Info'], [{'value': 'SELECT bloat'}])
        self.assertEqual(len(report.sections), 3)

    def test_failure_is_isolated(self):
        def run(query, row_limit, timeout):
            if query == 'SELECT bloat':
                raise RunnerStatementError('permission denied')
            return one_row(query)

        self.runner.run.side_effect = run
        report = self.build(report_format='json', max_workers=2)
        self.assertEqual([s.failed for s in report.sections], [True, False, False])
        self.assertEqual(self.runner.run.call_count, 3)

    def test_workers_are_joined_after_early_stop(self):
        finished = []

        def run(query, row_limit, timeout):
            if query == 'SELECT sizes':
                raise RunnerConnectivityError('server closed the connection', connection_lost=True)
            if query == 'SELECT lag':
                time.sleep(0.5)
                finished.append(query)
            return one_row(query)

        self.runner.run.side_effect = run
        report = self.build(report_format='text', max_workers=3)
        self.assertTrue(report.truncated)
        self.assertEqual(report.truncation_reason, "connection lost after 'DB Sizes'")
        self.assertEqual(finished, ['SELECT lag'])
        alive = [t.name for t in threading.enumerate() if t.name.startswith('health-check')]
        self.assertEqual(alive, [])

    def test_workers_are_joined_after_cancel(self):
        event = threading.Event()

        def run(query, row_limit, timeout):
            if query == 'SELECT bloat':
                event.set()
            else:
                time.sleep(0.2)
            return one_row(query)

        self.runner.run.side_effect = run
        report = self.build(report_format='json', max_workers=2, cancel_event=event)
        self.assertTrue(report.truncated)
        alive = [t.name for t in threading.enumerate() if t.name.startswith('health-check')]
        self.assertEqual(alive, [])


if __name__ == '__main__':
    unittest.main()
