"""
Unit tests for error classification, retry and notifications.
"""

import unittest
import httpx
import openai

from business_logic.error_handler import (
    ErrorHandler, ErrorInfo, ErrorCategory, ErrorSeverity, RetryConfig, MAX_ERROR_HISTORY
)
from data.exceptions import DataUnavailable, MissingRecord, InsufficientSample


def openai_status_error(error_class, status_code):
    request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')
    response = httpx.Response(status_code, request=request)
    return error_class(f"status {status_code}", response=response, body=None)


class TestErrorClassification(unittest.TestCase):
    """Test cases for ErrorHandler.classify_error."""

    def setUp(self):
        self.handler = ErrorHandler(sleep=lambda seconds: None)

    def test_data_unavailable(self):
        info = self.handler.classify_error(DataUnavailable("census file missing"), "report")

        self.assertEqual(info.category, ErrorCategory.DATA_ERROR)
        self.assertEqual(info.severity, ErrorSeverity.CRITICAL)
        self.assertFalse(info.retry_possible)

    def test_missing_record(self):
        info = self.handler.classify_error(MissingRecord("No segment named 'Motorcycles'"), "report")

        self.assertEqual(info.category, ErrorCategory.USER_ERROR)
        self.assertEqual(info.user_message, "No segment named 'Motorcycles'")

    def test_insufficient_sample(self):
        info = self.handler.classify_error(InsufficientSample("2 ZIP codes"), "report")
        self.assertEqual(info.category, ErrorCategory.VALIDATION_ERROR)

    def test_file_errors(self):
        info = self.handler.classify_error(FileNotFoundError("census.csv"), "load")
        self.assertEqual(info.category, ErrorCategory.DATA_ERROR)

        info = self.handler.classify_error(PermissionError("permission denied"), "load")
        self.assertEqual(info.category, ErrorCategory.DATA_ERROR)
        self.assertIn("permission", info.user_message)

    def test_value_errors(self):
        column_error = self.handler.classify_error(ValueError("Audience data file is missing columns: weight"))
        self.assertEqual(column_error.category, ErrorCategory.DATA_ERROR)

        plain_error = self.handler.classify_error(ValueError("Segment name is required"))
        self.assertEqual(plain_error.category, ErrorCategory.VALIDATION_ERROR)
        self.assertEqual(plain_error.user_message, "Segment name is required")

    def test_network_errors(self):
        info = self.handler.classify_error(ConnectionError("reset by peer"))
        self.assertEqual(info.category, ErrorCategory.NETWORK_ERROR)
        self.assertTrue(info.retry_possible)

        info = self.handler.classify_error(TimeoutError("timeout"))
        self.assertEqual(info.severity, ErrorSeverity.WARNING)

    def test_openai_errors(self):
        rate_limit = self.handler.classify_error(openai_status_error(openai.RateLimitError, 429))
        self.assertEqual(rate_limit.category, ErrorCategory.API_ERROR)
        self.assertTrue(rate_limit.retry_possible)
        self.assertEqual(self.handler.rate_limit_tracker['count'], 1)
        self.assertEqual(self.handler.get_rate_limit_delay(), 60.0)

        auth = self.handler.classify_error(openai_status_error(openai.AuthenticationError, 401))
        self.assertEqual(auth.severity, ErrorSeverity.CRITICAL)
        self.assertFalse(auth.retry_possible)

        server = self.handler.classify_error(openai_status_error(openai.InternalServerError, 503))
        self.assertTrue(server.retry_possible)

    def test_unexpected_error(self):
        info = self.handler.classify_error(RuntimeError("boom"))
        self.assertEqual(info.category, ErrorCategory.SYSTEM_ERROR)
        self.assertTrue(info.retry_possible)


class TestRetryWithBackoff(unittest.TestCase):
    """Test cases for ErrorHandler.retry_with_backoff."""

    def setUp(self):
        self.sleeps = []
        self.handler = ErrorHandler(sleep=self.sleeps.append)

    def test_success_after_retries(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        success, result, error_info = self.handler.retry_with_backoff(flaky, RetryConfig(max_attempts=3))

        self.assertTrue(success)
        self.assertEqual(result, "ok")
        self.assertIsNone(error_info)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_non_retryable_stops_immediately(self):
        attempts = []

        def missing():
            attempts.append(1)
            raise DataUnavailable("no data")

        success, result, error_info = self.handler.retry_with_backoff(missing, RetryConfig(max_attempts=3))

        self.assertFalse(success)
        self.assertIsNone(result)
        self.assertEqual(len(attempts), 1)
        self.assertEqual(error_info.category, ErrorCategory.DATA_ERROR)
        self.assertEqual(self.sleeps, [])

    def test_gives_up_after_max_attempts(self):
        def always_down():
            raise ConnectionError("down")

        success, _, error_info = self.handler.retry_with_backoff(always_down, RetryConfig(max_attempts=2))

        self.assertFalse(success)
        self.assertEqual(error_info.category, ErrorCategory.NETWORK_ERROR)
        self.assertEqual(self.sleeps, [1.0])

    def test_rate_limit_waits_recommended_delay(self):
        calls = []

        def throttled():
            calls.append(1)
            if len(calls) == 1:
                raise openai_status_error(openai.RateLimitError, 429)
            return "ok"

        success, result, _ = self.handler.retry_with_backoff(
            throttled, RetryConfig(max_attempts=2, base_delay=1.0, max_delay=20.0))

        self.assertTrue(success)
        self.assertEqual(result, "ok")
        self.assertEqual(self.sleeps, [20.0])

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=10, max_delay=25)
        self.assertEqual([config.delay_for(n) for n in range(3)], [10, 20, 25])
        self.assertEqual(RetryConfig(exponential_backoff=False).delay_for(5), 1.0)


class TestNotificationsAndHistory(unittest.TestCase):
    """Test cases for notifications and error history."""

    def setUp(self):
        self.handler = ErrorHandler(sleep=lambda seconds: None)

    def test_user_notification(self):
        info = self.handler.classify_error(MissingRecord("No segment named 'X'"), "report")
        notification = self.handler.create_user_notification(info)

        self.assertEqual(notification['type'], 'warning')
        self.assertEqual(notification['title'], 'Not Found')
        self.assertTrue(notification['dismissible'])
        self.assertIn('action', notification)
        self.assertNotIn('technical_details', notification)

    def test_critical_notification_has_details(self):
        info = self.handler.classify_error(DataUnavailable("census file missing"), "report")
        notification = self.handler.create_user_notification(info)

        self.assertEqual(notification['type'], 'error')
        self.assertFalse(notification['dismissible'])
        self.assertEqual(notification['technical_details'], 'census file missing')

    def test_history_is_capped(self):
        info = ErrorInfo(category=ErrorCategory.SYSTEM_ERROR, severity=ErrorSeverity.INFO,
                         message="noted", user_message="noted")
        for _ in range(MAX_ERROR_HISTORY + 5):
            self.handler.log_error(info, "test")

        self.assertEqual(len(self.handler.error_history), MAX_ERROR_HISTORY)
        stats = self.handler.get_error_statistics()
        self.assertEqual(stats['total_errors'], MAX_ERROR_HISTORY)
        self.assertEqual(stats['category_breakdown'], {'system_error': MAX_ERROR_HISTORY})

    def test_empty_statistics(self):
        self.assertEqual(self.handler.get_error_statistics(), {'total_errors': 0})


if __name__ == '__main__':
    unittest.main()
