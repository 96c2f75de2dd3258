"""
Unit Tests for Structured Logging

This test module validates structured event emission and the logger setup
used by the command-line entry point.

Test Coverage:
    - ActionResult enum values
    - Log level selection based on result type
    - Event schema for route changes, status, waits, detection, lifecycle
    - Correlation ID tracking
    - Console filters (structured vs human-readable), quiet mode, file logging
"""

import json
import logging
import os
import tempfile
import unittest
from unittest.mock import Mock

from cloud_floating_ip.logging_setup import (
    NonStructuredFilter,
    StructuredFilter,
    StructuredFormatter,
    setup_logger,
)
from cloud_floating_ip.structured_events import (
    ActionResult,
    EventType,
    StructuredEvent,
    StructuredEventLogger,
)


class TestActionResultEnum(unittest.TestCase):

    def test_action_result_values_defined(self):
        self.assertEqual(ActionResult.SUCCESS.value, "success")
        self.assertEqual(ActionResult.FAILURE.value, "failure")
        self.assertEqual(ActionResult.NO_CHANGE.value, "no_change")
        self.assertEqual(ActionResult.SKIPPED.value, "skipped")


class StructuredEventLoggerTestCase(unittest.TestCase):

    def setUp(self):
        self.mock_logger = Mock()
        self.event_logger = StructuredEventLogger("test_logger")
        self.event_logger.logger = self.mock_logger

    def logged(self):
        """Level and json_fields of the last logged event."""
        call_args = self.mock_logger.log.call_args
        return call_args[0][0], call_args[1]['extra']['json_fields']


class TestStructuredEventLoggerLogLevels(StructuredEventLoggerTestCase):

    def make_event(self, result):
        return StructuredEvent(event_type="test_event", timestamp=0.0, result=result.value,
                               component="test", operation="test_op", details={})

    def test_levels_by_result(self):
        cases = [
            (ActionResult.FAILURE, logging.ERROR),
            (ActionResult.SUCCESS, logging.INFO),
            (ActionResult.SKIPPED, logging.INFO),
            (ActionResult.NO_CHANGE, logging.DEBUG),
        ]
        for result, level in cases:
            with self.subTest(result=result):
                self.event_logger.log_event(self.make_event(result))
                self.assertEqual(self.logged()[0], level)

    def test_rejects_plain_dicts(self):
        with self.assertRaises(TypeError):
            self.event_logger.log_event({"result": "success"})

    def test_correlation_id(self):
        self.event_logger.set_correlation_id("abc-123")
        self.event_logger.log_event(self.make_event(ActionResult.SUCCESS))
        self.assertEqual(self.logged()[1]["correlation_id"], "abc-123")


class TestStructuredEvents(StructuredEventLoggerTestCase):

    def test_route_change(self):
        self.event_logger.log_route_change(provider="aws", table_id="rtb-1", destination="10.0.0.1/32",
                                           action="replace", result=ActionResult.SKIPPED, target="eni-1")
        level, fields = self.logged()

        self.assertEqual(level, logging.INFO)
        self.assertTrue(fields["structured_event"])
        self.assertEqual(fields["event_type"], EventType.ROUTE_CHANGE.value)
        self.assertEqual(fields["operation"], "replace_route")
        self.assertEqual(fields["result"], "skipped")
        self.assertEqual(fields["details"]["table_id"], "rtb-1")
        self.assertEqual(fields["details"]["target"], "eni-1")

    def test_route_change_failure(self):
        self.event_logger.log_route_change(provider="gce", table_id="default", destination="10.0.0.1/32",
                                           action="delete_then_insert", result=ActionResult.FAILURE,
                                           error_message="quota")
        level, fields = self.logged()
        self.assertEqual(level, logging.ERROR)
        self.assertEqual(fields["error_message"], "quota")

    def test_route_status(self):
        self.event_logger.log_route_status(provider="aws", destination="10.0.0.1/32", owner=False,
                                           table_states={"rtb-1": "absent"})
        _, fields = self.logged()
        self.assertEqual(fields["event_type"], EventType.ROUTE_STATUS.value)
        self.assertFalse(fields["details"]["owner"])
        self.assertEqual(fields["details"]["tables"], {"rtb-1": "absent"})

    def test_operation_wait(self):
        self.event_logger.log_operation_wait(operation="op-1", outcome="timeout", attempts=120)
        level, fields = self.logged()
        self.assertEqual(level, logging.ERROR)
        self.assertEqual(fields["details"]["attempts"], 120)

    def test_provider_detection(self):
        self.event_logger.log_provider_detection(provider=None, requested=None, probed={"aws": False},
                                                 error_message="none detected")
        _, fields = self.logged()
        self.assertEqual(fields["result"], "failure")
        self.assertEqual(fields["details"]["probed"], {"aws": False})

    def test_lifecycle(self):
        self.event_logger.log_lifecycle(command="preempt", result=ActionResult.SUCCESS, dry_run=True,
                                        duration_ms=12)
        _, fields = self.logged()
        self.assertEqual(fields["event_type"], EventType.LIFECYCLE.value)
        self.assertEqual(fields["operation"], "preempt")
        self.assertTrue(fields["details"]["dry_run"])
        self.assertEqual(fields["duration_ms"], 12)


class TestLoggingSetup(unittest.TestCase):

    def make_record(self, structured):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "plain message", None, None)
        if structured:
            record.json_fields = {"structured_event": True, "result": "success"}
        return record

    def test_filters(self):
        structured, plain = self.make_record(True), self.make_record(False)
        self.assertTrue(StructuredFilter().filter(structured))
        self.assertFalse(StructuredFilter().filter(plain))
        self.assertTrue(NonStructuredFilter().filter(plain))
        self.assertFalse(NonStructuredFilter().filter(structured))

    def test_formatter(self):
        formatter = StructuredFormatter()
        self.assertEqual(json.loads(formatter.format(self.make_record(True)))["result"], "success")
        self.assertEqual(formatter.format(self.make_record(False)), "plain message")

    def test_quiet_console(self):
        logger = setup_logger("cfi_test_quiet", "DEBUG", quiet=True)
        self.assertEqual(len(logger.handlers), 1)
        self.assertEqual(logger.handlers[0].level, logging.WARNING)
        self.assertFalse(logger.propagate)

    def test_repeated_setup_replaces_handlers(self):
        setup_logger("cfi_test_repeat", "INFO")
        logger = setup_logger("cfi_test_repeat", "INFO")
        self.assertEqual(len(logger.handlers), 1)

    def test_file_logging(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, "logs", "cfi.log")
            logger = setup_logger("cfi_test_file", "INFO", log_file=log_file)
            logger.info("hello")
            for handler in list(logger.handlers):
                handler.flush()
                handler.close()
                logger.removeHandler(handler)

            with open(log_file) as f:
                self.assertIn("hello", f.read())


if __name__ == '__main__':
    unittest.main()
