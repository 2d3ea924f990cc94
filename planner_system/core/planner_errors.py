#!/usr/bin/env python3
"""
planner_errors - Centralized exception handling for the planner services

Components take an optional ErrorHandler and route failures through it instead
of scattering print/log calls. Without one they log to their module logger.
"""

import logging
import traceback
from collections import defaultdict, deque
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Optional


class CollaborationError(Exception):
    """Remote half of an optimistic collaboration operation failed"""

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        super().__init__(message or f"{operation} was rejected by the collaboration service")


class ErrorSeverity(Enum):
    """Error severity levels with clear action mappings"""
    CRITICAL_STOP = "critical_stop"       # Stop everything, human intervention needed
    HIGH_DEGRADE = "high_degrade"         # Feature broken, continue with degraded functionality
    MEDIUM_ALERT = "medium_alert"         # User should know, show in alerts panel
    LOW_DEBUG = "low_debug"               # Background issue, show only in debug mode


class ErrorCategory(Enum):
    """Error categories covering both services"""
    # AI providers
    AI_REQUEST = "ai_request"                # Request failed after retries
    AI_RATE_LIMIT = "ai_rate_limit"          # Provider throttling
    AI_CONFIGURATION = "ai_configuration"    # Missing or placeholder credentials
    AI_RESPONSE = "ai_response"              # Malformed provider response

    # Realtime collaboration
    REALTIME_CONNECTION = "realtime"         # Socket open/close/reconnect
    MESSAGE_PARSING = "message_parsing"      # Inbound frame could not be decoded
    EVENT_HANDLER = "event_handler"          # Subscriber raised
    COLLABORATION_SYNC = "collab_sync"       # Optimistic update rolled back

    # Catch-all
    CONFIGURATION = "configuration"
    GENERAL = "general"


SEVERITY_STYLES = {
    ErrorSeverity.CRITICAL_STOP: "red bold",
    ErrorSeverity.HIGH_DEGRADE: "red",
    ErrorSeverity.MEDIUM_ALERT: "yellow",
    ErrorSeverity.LOW_DEBUG: "dim yellow",
}

SEVERITY_LEVELS = {
    ErrorSeverity.CRITICAL_STOP: logging.CRITICAL,
    ErrorSeverity.HIGH_DEGRADE: logging.ERROR,
    ErrorSeverity.MEDIUM_ALERT: logging.WARNING,
    ErrorSeverity.LOW_DEBUG: logging.DEBUG,
}


class ErrorHandler:
    """
    Shared sink for failures from the AI client, the session manager and the
    workspace. Repeats of the same category/exception type inside the
    suppression window are counted but not logged again. Critical errors (and
    everything, in debug mode) are also printed to the rich console.
    """

    MAX_RECENT = 100

    def __init__(self, console=None, debug_mode: bool = False):
        self.console = console
        self.debug_mode = debug_mode

        self.error_counts: Dict[str, int] = defaultdict(int)
        self.suppressed_errors: Dict[str, int] = defaultdict(int)
        self.last_error_time: Dict[str, datetime] = {}
        self.recent_errors: Deque[Dict[str, Any]] = deque(maxlen=self.MAX_RECENT)

        self.logger = logging.getLogger('planner_errors')

    def handle_error(self,
                     error: Exception,
                     category: ErrorCategory,
                     severity: ErrorSeverity,
                     context: str = "",
                     operation: str = "",
                     suppress_duplicate_minutes: int = 5) -> bool:
        """
        Record and log one failure.

        Returns:
            bool: True if the caller may carry on, False for CRITICAL_STOP
        """
        error_key = f"{category.value}_{type(error).__name__}"
        now = datetime.now()
        self.error_counts[error_key] += 1

        last = self.last_error_time.get(error_key)
        if last is not None and (now - last).total_seconds() < suppress_duplicate_minutes * 60:
            self.suppressed_errors[error_key] += 1
            return True
        self.last_error_time[error_key] = now

        message = self.format_message(error_key, error, context, operation)
        self.recent_errors.append({
            'timestamp': now,
            'category': category.value,
            'severity': severity.value,
            'error_type': type(error).__name__,
            'message': str(error),
            'context': context,
            'operation': operation,
        })

        self.logger.log(SEVERITY_LEVELS[severity], f"{category.value}: {message}", exc_info=self.debug_mode)

        if self.console and (severity == ErrorSeverity.CRITICAL_STOP or self.debug_mode):
            style = SEVERITY_STYLES[severity]
            self.console.print(f"[{style}]{message}[/{style}]")
            if self.debug_mode and severity == ErrorSeverity.CRITICAL_STOP:
                self.console.print(f"[red dim]Traceback:\n{traceback.format_exc()}[/red dim]")

        return severity != ErrorSeverity.CRITICAL_STOP

    def format_message(self, error_key: str, error: Exception, context: str, operation: str) -> str:
        message = str(error)
        if len(message) > 100:
            message = message[:100] + "..."
        if context:
            message = f"{context}: {message}"
        if operation:
            message = f"During {operation} - {message}"

        count = self.error_counts.get(error_key, 1)
        if count > 1:
            message += f" (#{count})"

        suppressed = self.suppressed_errors.pop(error_key, 0)
        if suppressed:
            message += f" [+{suppressed} suppressed]"
        return message


def report_error(error_handler: Optional[ErrorHandler], logger: logging.Logger,
                 error: Exception, category: ErrorCategory, severity: ErrorSeverity,
                 context: str = "", operation: str = "") -> None:
    """Route error through error_handler if available, otherwise log it"""
    if error_handler:
        error_handler.handle_error(error, category, severity, context=context, operation=operation)
    else:
        logger.warning(f"[{operation}] {context}: {error}")
