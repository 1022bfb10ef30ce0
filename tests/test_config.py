"""
Configuration and structured logging tests.
"""

import json
import logging
import os
import unittest
from unittest import mock

from tfaguard.config import ONE_DAY, GuardConfig, validate_config
from tfaguard.logging_config import (
    AuditLogger,
    StructuredFormatter,
    get_request_id,
    set_request_id,
)


class TestGuardConfig(unittest.TestCase):

    def test_defaults(self):
        config = GuardConfig(fast_recovery_delay=ONE_DAY, slow_recovery_delay=14 * ONE_DAY,
                             delegation_delay=14 * ONE_DAY)
        self.assertEqual(config.fast_recovery_delay, 86400)
        self.assertEqual(config.slow_recovery_delay, 14 * 86400)

    def test_negative_delay_rejected(self):
        with self.assertRaises(ValueError):
            GuardConfig(fast_recovery_delay=-1)

    def test_slow_shorter_than_fast_rejected(self):
        with self.assertRaises(ValueError):
            GuardConfig(fast_recovery_delay=10, slow_recovery_delay=5)

    def test_from_env(self):
        env = {
            "TFA_FAST_RECOVERY_DELAY": "60",
            "TFA_SLOW_RECOVERY_DELAY": "120",
            "TFA_DELEGATION_DELAY": "180",
            "TFA_REARM_RECOVERY": "false",
        }
        with mock.patch.dict(os.environ, env):
            config = GuardConfig.from_env()
        self.assertEqual(config.fast_recovery_delay, 60)
        self.assertEqual(config.slow_recovery_delay, 120)
        self.assertEqual(config.delegation_delay, 180)
        self.assertFalse(config.rearm_recovery)

    def test_validate_config_reports_checks(self):
        checks = validate_config()
        self.assertIn("delays_non_negative", checks)
        self.assertIn("slow_not_shorter_than_fast", checks)


class TestStructuredLogging(unittest.TestCase):

    def test_formatter_emits_json_with_request_id(self):
        set_request_id("req-42")
        record = logging.LogRecord("tfaguard", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        data = json.loads(StructuredFormatter().format(record))
        self.assertEqual(data["message"], "hello world")
        self.assertEqual(data["request_id"], "req-42")
        self.assertEqual(data["level"], "INFO")

    def test_generated_request_id(self):
        request_id = set_request_id()
        self.assertEqual(get_request_id(), request_id)
        self.assertEqual(len(request_id), 36)

    def test_audit_events_carry_fields(self):
        audit = AuditLogger("tfaguard.audit.test")
        with self.assertLogs("tfaguard.audit.test", level="WARNING") as captured:
            audit.request_rejected("guard-1", "SEND_ACTIONS", "BAD_SIGNATURE", "nope")
        record = captured.records[0]
        self.assertEqual(record.extra_fields["event_type"], "REQUEST_REJECTED")
        self.assertEqual(record.extra_fields["reason"], "BAD_SIGNATURE")
        self.assertEqual(record.extra_fields["guard"], "guard-1")


if __name__ == "__main__":
    unittest.main()
