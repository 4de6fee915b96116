#!/usr/bin/env python3
"""
Unit tests for retry utilities.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch, call

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from user_reconcile.retry import (
    retry_call, is_retryable_error, create_retry_callback, MaxRetriesExceeded
)


@patch('user_reconcile.retry.time.sleep')
class TestRetryCall(unittest.TestCase):
    """Test cases for retry_call."""

    def test_success_first_attempt(self, mock_sleep):
        func = Mock(return_value='ok')

        self.assertEqual(retry_call(func, args=(1,), kwargs={'a': 2}), 'ok')

        func.assert_called_once_with(1, a=2)
        mock_sleep.assert_not_called()

    def test_success_after_retries_with_backoff(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError('refused'), ConnectionError('refused'), 'ok'])
        on_retry = Mock()

        result = retry_call(func, max_attempts=3, delay=1.0, backoff=2.0, on_retry=on_retry)

        self.assertEqual(result, 'ok')
        self.assertEqual(mock_sleep.call_args_list, [call(1.0), call(2.0)])
        self.assertEqual([c.args[0] for c in on_retry.call_args_list], [1, 2])

    def test_max_retries_exceeded(self, mock_sleep):
        error = TimeoutError('timed out')
        func = Mock(side_effect=error)

        with self.assertRaises(MaxRetriesExceeded) as ctx:
            retry_call(func, max_attempts=2, delay=0)

        self.assertEqual(ctx.exception.attempts, 2)
        self.assertIs(ctx.exception.last_exception, error)
        self.assertEqual(func.call_count, 2)
        self.assertEqual(mock_sleep.call_count, 1)

    def test_other_exceptions_propagate(self, mock_sleep):
        func = Mock(side_effect=ValueError('bad input'))

        with self.assertRaises(ValueError):
            retry_call(func, max_attempts=3, exceptions=(ConnectionError,))

        func.assert_called_once()
        mock_sleep.assert_not_called()

    def test_rejected_exception_is_not_retried(self, mock_sleep):
        error = ConnectionError('invalidCredentials')
        func = Mock(side_effect=error)

        with self.assertRaises(ConnectionError) as ctx:
            retry_call(func, max_attempts=3, retry_if=lambda e: 'invalid' not in str(e))

        self.assertIs(ctx.exception, error)
        func.assert_called_once()
        mock_sleep.assert_not_called()

    def test_accepted_exception_is_retried(self, mock_sleep):
        func = Mock(side_effect=[TimeoutError('timed out'), 'ok'])

        self.assertEqual(retry_call(func, max_attempts=2, delay=0, retry_if=is_retryable_error), 'ok')
        self.assertEqual(func.call_count, 2)


class TestRetryHelpers(unittest.TestCase):
    """Test cases for is_retryable_error and create_retry_callback."""

    def test_retryable_types(self):
        self.assertTrue(is_retryable_error(ConnectionError('x')))
        self.assertTrue(is_retryable_error(TimeoutError('x')))

    def test_retryable_messages(self):
        self.assertTrue(is_retryable_error(Exception('Connection reset by peer')))
        self.assertTrue(is_retryable_error(Exception('LDAP server unavailable')))
        self.assertFalse(is_retryable_error(Exception('invalidCredentials')))

    def test_callback_logs_warning(self):
        callback = create_retry_callback('LDAP connection')

        with self.assertLogs('user_reconcile.retry', level='WARNING') as logs:
            callback(1, ConnectionError('refused'))

        self.assertIn('LDAP connection failed on attempt 1', logs.output[0])


if __name__ == '__main__':
    unittest.main()
