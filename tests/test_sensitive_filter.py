#!/usr/bin/env python3
"""
Tests for sensitive data filtering and the security audit logger.
"""

import sys
import os
import logging
import tempfile
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_auth.logging_setup import (
    SensitiveDataFilter,
    SecurityAuditLogger,
    LoggingManager,
    LOG_FILE_NAME,
)


def filtered(message):
    record = logging.LogRecord('test', logging.INFO, __file__, 1, message, None, None)
    SensitiveDataFilter().filter(record)
    return record.msg


def test_filter_patterns():
    test_cases = [
        ('password=secret123', 'password=****'),
        ('search_password=hunter2, retry', 'search_password=****, retry'),
        ('token=abc123def456', 'token=****'),
        ('{"password": "test123"}', '{"password": "****"}'),
        ("{'search_password': 'topsecret'}", "{'search_password': '****'}"),
        ('Authorization: Bearer abc123token', 'Authorization: Bearer ****'),
        ('Authorization: Basic cmVhZGVyOnBhc3M=', 'Authorization: Basic ****'),
        ('Normal message without secrets', 'Normal message without secrets'),
    ]

    for input_msg, expected in test_cases:
        assert filtered(input_msg) == expected, f"{input_msg!r} -> {filtered(input_msg)!r}"


def test_usernames_are_kept():
    assert filtered('Authentication SUCCESS: ldap user=jdoe') == 'Authentication SUCCESS: ldap user=jdoe'


class TestSecurityAuditLogger(unittest.TestCase):

    def test_audit_messages(self):
        audit = SecurityAuditLogger()
        with self.assertLogs('security', level='INFO') as logs:
            audit.log_authentication_attempt('ldap', 'jdoe', False)
            audit.log_credential_check('jdoe', True)
            audit.log_account_created('jdoe', [4, 9])
            audit.log_membership_change('unassign', 'jdoe', 9)

        self.assertIn('Authentication FAILURE: ldap user=jdoe', logs.output[0])
        self.assertIn('Credential check SUCCESS: user=jdoe', logs.output[1])
        self.assertIn("Account created: user=jdoe groups=['4', '9']", logs.output[2])
        self.assertIn('Membership unassign: user=jdoe group=9', logs.output[3])


class TestLoggingManager(unittest.TestCase):

    def setUp(self):
        self.root = logging.getLogger()
        self.saved_handlers = list(self.root.handlers)
        self.saved_level = self.root.level

    def tearDown(self):
        for handler in self.root.handlers:
            if handler not in self.saved_handlers:
                handler.close()
        self.root.handlers[:] = self.saved_handlers
        self.root.setLevel(self.saved_level)

    def test_setup_creates_log_file_with_filter(self):
        log_dir = tempfile.mkdtemp(prefix='ldap_auth_test_logs_')
        manager = LoggingManager()

        manager.setup_logging({'level': 'DEBUG', 'log_dir': log_dir, 'console_output': False})
        logging.getLogger('ldap_auth.test').info('bind with password=hunter2')
        for handler in self.root.handlers:
            handler.flush()

        self.assertTrue(manager.configured)
        with open(os.path.join(log_dir, LOG_FILE_NAME), encoding='utf-8') as f:
            content = f.read()
        self.assertIn('password=****', content)
        self.assertNotIn('hunter2', content)

    def test_setup_only_once(self):
        log_dir = tempfile.mkdtemp(prefix='ldap_auth_test_logs_')
        manager = LoggingManager()
        manager.setup_logging({'log_dir': log_dir, 'console_output': False})
        handlers = list(self.root.handlers)

        manager.setup_logging({'log_dir': log_dir, 'console_output': True})

        self.assertEqual(self.root.handlers, handlers)


if __name__ == '__main__':
    test_filter_patterns()
    unittest.main()
