"""
Error classification, retry and user feedback for the audience insights engine.

Report generation, data loading and narrative calls all route failures
through the shared ``error_handler`` so callers get a consistent
(success, result, message, notification) surface.
"""

import logging
import time
from typing import Dict, Any, Optional, Callable, Tuple
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timedelta
import openai

from data.exceptions import AudienceEngineError, DataUnavailable, MissingRecord, InsufficientSample

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 100


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    API_ERROR = "api_error"
    DATA_ERROR = "data_error"
    VALIDATION_ERROR = "validation_error"
    NETWORK_ERROR = "network_error"
    SYSTEM_ERROR = "system_error"
    USER_ERROR = "user_error"


@dataclass
class ErrorInfo:
    """Structured error information."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    technical_details: Optional[str] = None
    suggested_action: Optional[str] = None
    retry_possible: bool = False
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


class RetryConfig:
    """Configuration for retry mechanisms."""

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0,
                 exponential_backoff: bool = True, max_delay: float = 60.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.exponential_backoff = exponential_backoff
        self.max_delay = max_delay

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based attempt."""
        if self.exponential_backoff:
            return min(self.base_delay * (2 ** attempt), self.max_delay)
        return self.base_delay


class ErrorHandler:
    """
    Centralized error handling and user feedback.

    Classifies engine, data, network and narrative-service failures,
    retries the retryable ones with backoff and keeps a short history
    for monitoring.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.error_history = []
        self.rate_limit_tracker = {}
        self._sleep = sleep

    def handle_engine_error(self, error: AudienceEngineError, context: str = "") -> ErrorInfo:
        """
        Handle the engine's own exception hierarchy.

        Args:
            error: DataUnavailable, MissingRecord or another engine error
            context: Operation being performed

        Returns:
            ErrorInfo object with structured error information
        """
        if isinstance(error, DataUnavailable):
            return ErrorInfo(
                category=ErrorCategory.DATA_ERROR,
                severity=ErrorSeverity.CRITICAL,
                message=f"Required data unavailable in {context}: {str(error)}",
                user_message="Census or audience data is not loaded, so insights cannot be generated.",
                technical_details=str(error),
                suggested_action="Check the configured census and audience export paths and reload the data.",
                retry_possible=False
            )

        if isinstance(error, MissingRecord):
            return ErrorInfo(
                category=ErrorCategory.USER_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"Record not found in {context}: {str(error)}",
                user_message=str(error),
                suggested_action="Check the spelling of the segment or market name, or search for it first.",
                retry_possible=False
            )

        if isinstance(error, InsufficientSample):
            return ErrorInfo(
                category=ErrorCategory.VALIDATION_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"Insufficient sample in {context}: {str(error)}",
                user_message="Not enough matching ZIP codes to produce a reliable result.",
                suggested_action="Broaden the segment search or include non-residential ZIP codes.",
                retry_possible=False
            )

        return ErrorInfo(
            category=ErrorCategory.SYSTEM_ERROR,
            severity=ErrorSeverity.ERROR,
            message=f"Engine error in {context}: {str(error)}",
            user_message="The insights engine could not complete the request.",
            technical_details=str(error),
            retry_possible=False
        )

    def handle_openai_error(self, error: Exception, context: str = "") -> ErrorInfo:
        """
        Handle narrative service (OpenAI) errors.

        Args:
            error: The OpenAI exception
            context: Operation being performed

        Returns:
            ErrorInfo object with structured error information
        """
        if isinstance(error, openai.AuthenticationError):
            return ErrorInfo(
                category=ErrorCategory.API_ERROR,
                severity=ErrorSeverity.CRITICAL,
                message=f"OpenAI authentication failed: {str(error)}",
                user_message="Narrative insights are unavailable because the OpenAI API key was rejected.",
                suggested_action="Verify OPENAI_API_KEY in Streamlit secrets or the environment.",
                retry_possible=False
            )

        if isinstance(error, openai.RateLimitError):
            self._track_rate_limit()
            return ErrorInfo(
                category=ErrorCategory.API_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"OpenAI rate limit exceeded: {str(error)}",
                user_message="The narrative service is busy. Rule-based insights are shown instead.",
                suggested_action="Wait a moment and regenerate the report.",
                retry_possible=True
            )

        if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)) or "timeout" in str(error).lower():
            return ErrorInfo(
                category=ErrorCategory.NETWORK_ERROR,
                severity=ErrorSeverity.WARNING,
                message=f"OpenAI request did not complete: {str(error)}",
                user_message="The narrative service could not be reached in time.",
                suggested_action="Check your internet connection and retry.",
                retry_possible=True
            )

        if isinstance(error, openai.BadRequestError):
            return ErrorInfo(
                category=ErrorCategory.API_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"OpenAI rejected the request in {context}: {str(error)}",
                user_message="The narrative service rejected the request.",
                technical_details=str(error),
                retry_possible=False
            )

        status_code = getattr(error, 'status_code', None)
        if status_code is not None and status_code >= 500:
            return ErrorInfo(
                category=ErrorCategory.API_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"OpenAI server error ({status_code}): {str(error)}",
                user_message="The narrative service encountered an internal error.",
                suggested_action="Retry in a few minutes.",
                retry_possible=True
            )

        return ErrorInfo(
            category=ErrorCategory.API_ERROR,
            severity=ErrorSeverity.ERROR,
            message=f"OpenAI error in {context}: {str(error)}",
            user_message="An error occurred while generating narrative insights.",
            technical_details=str(error),
            suggested_action="Please try again. Rule-based insights remain available.",
            retry_possible=True
        )

    def handle_data_error(self, error: Exception, context: str = "") -> ErrorInfo:
        """
        Handle file and parsing errors on census, audience and overlap sources.

        Args:
            error: The data exception
            context: Operation being performed

        Returns:
            ErrorInfo object with structured error information
        """
        error_str = str(error).lower()

        if isinstance(error, FileNotFoundError) or "no such file" in error_str or "not found" in error_str:
            return ErrorInfo(
                category=ErrorCategory.DATA_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Data file not found: {str(error)}",
                user_message="A required census or audience export is missing.",
                suggested_action="Place the exports at the configured paths (GEO_DATA_PATH, AUDIENCE_DATA_PATH).",
                retry_possible=False
            )

        if isinstance(error, PermissionError) or "permission denied" in error_str:
            return ErrorInfo(
                category=ErrorCategory.DATA_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"File permission error: {str(error)}",
                user_message="Data files cannot be read due to permission restrictions.",
                suggested_action="Check file permissions on the data and cache directories.",
                retry_possible=False
            )

        if "missing required column" in error_str or "column" in error_str:
            return ErrorInfo(
                category=ErrorCategory.DATA_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Data export has an unexpected layout: {str(error)}",
                user_message="A data export is missing required columns.",
                suggested_action="Re-export the file with the expected column headers.",
                retry_possible=False
            )

        return ErrorInfo(
            category=ErrorCategory.DATA_ERROR,
            severity=ErrorSeverity.ERROR,
            message=f"Data processing error in {context}: {str(error)}",
            user_message="An error occurred while processing data files.",
            technical_details=str(error),
            suggested_action="Check the data exports and try again.",
            retry_possible=False
        )

    def handle_network_error(self, error: Exception, context: str = "") -> ErrorInfo:
        error_str = str(error).lower()
        timed_out = isinstance(error, TimeoutError) or "timeout" in error_str

        return ErrorInfo(
            category=ErrorCategory.NETWORK_ERROR,
            severity=ErrorSeverity.WARNING if timed_out else ErrorSeverity.ERROR,
            message=f"Network error in {context}: {str(error)}",
            user_message="The request timed out." if timed_out else "A network error occurred.",
            technical_details=str(error),
            suggested_action="Check your internet connection and try again.",
            retry_possible=True
        )

    def handle_validation_error(self, error: Exception, context: str = "") -> ErrorInfo:
        return ErrorInfo(
            category=ErrorCategory.VALIDATION_ERROR,
            severity=ErrorSeverity.WARNING,
            message=f"Validation error in {context}: {str(error)}",
            user_message=str(error),
            suggested_action="Correct the request and try again.",
            retry_possible=False
        )

    def retry_with_backoff(self, func: Callable, config: RetryConfig = None,
                           context: str = "") -> Tuple[bool, Any, Optional[ErrorInfo]]:
        """
        Execute a function with retry logic and exponential backoff.

        Non-retryable errors stop immediately. After a rate limit the wait
        grows to the recommended rate-limit delay, capped at ``max_delay``.

        Args:
            func: Zero-argument callable to execute
            config: Retry configuration
            context: Context for error reporting

        Returns:
            Tuple of (success, result, error_info)
        """
        if config is None:
            config = RetryConfig()

        last_error = None

        for attempt in range(config.max_attempts):
            try:
                return True, func(), None

            except Exception as e:
                last_error = e
                logger.warning(f"Attempt {attempt + 1}/{config.max_attempts} failed in {context}: {str(e)}")

                if attempt == config.max_attempts - 1:
                    break

                if not self.classify_error(e, context).retry_possible:
                    break

                delay = config.delay_for(attempt)
                if isinstance(e, openai.RateLimitError):
                    delay = min(max(delay, self.get_rate_limit_delay()), config.max_delay)
                logger.info(f"Retrying in {delay} seconds...")
                self._sleep(delay)

        return False, None, self.classify_error(last_error, context)

    def classify_error(self, error: Exception, context: str = "") -> ErrorInfo:
        """
        Classify an exception into an ErrorInfo.

        Args:
            error: The exception to classify
            context: Operation being performed

        Returns:
            ErrorInfo object with structured error information
        """
        try:
            if isinstance(error, AudienceEngineError):
                return self.handle_engine_error(error, context)

            if isinstance(error, openai.OpenAIError):
                return self.handle_openai_error(error, context)

            if isinstance(error, (ConnectionError, TimeoutError)):
                return self.handle_network_error(error, context)

            if isinstance(error, (FileNotFoundError, PermissionError, IOError)):
                return self.handle_data_error(error, context)

            if isinstance(error, (ValueError, TypeError, KeyError)):
                error_str = str(error).lower()
                if "column" in error_str or "file" in error_str:
                    return self.handle_data_error(error, context)
                return self.handle_validation_error(error, context)

            return ErrorInfo(
                category=ErrorCategory.SYSTEM_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"Unexpected error in {context}: {str(error)}",
                user_message="An unexpected error occurred. Please try again.",
                technical_details=str(error),
                suggested_action="Try again. If the problem persists, check the application logs.",
                retry_possible=True
            )

        except Exception as e:
            logger.error(f"Error in error classification: {str(e)}")
            return ErrorInfo(
                category=ErrorCategory.SYSTEM_ERROR,
                severity=ErrorSeverity.CRITICAL,
                message=f"Critical error in error handling: {str(e)}",
                user_message="A critical system error occurred.",
                retry_possible=False
            )

    def _track_rate_limit(self):
        now = datetime.now()
        self.rate_limit_tracker['last_rate_limit'] = now
        self.rate_limit_tracker['count'] = self.rate_limit_tracker.get('count', 0) + 1

    def get_rate_limit_delay(self) -> float:
        """Recommended delay based on rate limiting history."""
        if 'last_rate_limit' not in self.rate_limit_tracker:
            return 1.0

        count = self.rate_limit_tracker.get('count', 1)
        return 60.0 * min(count, 5)

    def create_user_notification(self, error_info: ErrorInfo) -> Dict[str, Any]:
        """
        Create a user-facing notification from error information.

        Args:
            error_info: Structured error information

        Returns:
            Dictionary with notification data for display
        """
        notification_type_map = {
            ErrorSeverity.INFO: "info",
            ErrorSeverity.WARNING: "warning",
            ErrorSeverity.ERROR: "error",
            ErrorSeverity.CRITICAL: "error"
        }

        notification = {
            'type': notification_type_map[error_info.severity],
            'title': self._get_error_title(error_info),
            'message': error_info.user_message,
            'timestamp': error_info.timestamp.isoformat(),
            'dismissible': error_info.severity in [ErrorSeverity.INFO, ErrorSeverity.WARNING],
            'retry_possible': error_info.retry_possible
        }

        if error_info.suggested_action:
            notification['action'] = error_info.suggested_action

        if error_info.technical_details and error_info.severity == ErrorSeverity.CRITICAL:
            notification['technical_details'] = error_info.technical_details

        return notification

    def _get_error_title(self, error_info: ErrorInfo) -> str:
        title_map = {
            ErrorCategory.API_ERROR: "Narrative Service Error",
            ErrorCategory.DATA_ERROR: "Data Error",
            ErrorCategory.VALIDATION_ERROR: "Invalid Request",
            ErrorCategory.NETWORK_ERROR: "Connection Error",
            ErrorCategory.SYSTEM_ERROR: "System Error",
            ErrorCategory.USER_ERROR: "Not Found"
        }

        return title_map.get(error_info.category, "Error")

    def log_error(self, error_info: ErrorInfo, context: str = ""):
        """
        Record an error in the history and log it at its severity.

        Args:
            error_info: Structured error information
            context: Additional context
        """
        self.error_history.append(error_info)
        if len(self.error_history) > MAX_ERROR_HISTORY:
            self.error_history = self.error_history[-MAX_ERROR_HISTORY:]

        log_message = f"{context}: {error_info.message}"

        if error_info.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message)
        elif error_info.severity == ErrorSeverity.ERROR:
            logger.error(log_message)
        elif error_info.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def get_error_statistics(self) -> Dict[str, Any]:
        """
        Error statistics for monitoring.

        Returns:
            Dictionary with totals and 24-hour category/severity breakdowns
        """
        if not self.error_history:
            return {'total_errors': 0}

        category_counts = {}
        severity_counts = {}

        recent_errors = [
            err for err in self.error_history
            if err.timestamp > datetime.now() - timedelta(hours=24)
        ]

        for error in recent_errors:
            category_counts[error.category.value] = category_counts.get(error.category.value, 0) + 1
            severity_counts[error.severity.value] = severity_counts.get(error.severity.value, 0) + 1

        return {
            'total_errors': len(self.error_history),
            'recent_errors_24h': len(recent_errors),
            'category_breakdown': category_counts,
            'severity_breakdown': severity_counts,
            'rate_limit_info': self.rate_limit_tracker
        }


# Global error handler instance
error_handler = ErrorHandler()
