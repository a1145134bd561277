"""
Exception hierarchy for the Storefront API Client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that every outcome returned by the client can be
inspected, logged and serialized in the same way.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum
import asyncio


class ErrorCode(Enum):
    """Standardized error codes for the Storefront API Client."""

    # Authentication Errors (1000-1099)
    AUTH_CREDENTIAL_REJECTED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_REFRESH_TIMEOUT = "AUTH_1003"
    AUTH_RETRY_EXHAUSTED = "AUTH_1004"
    AUTH_LOGIN_FAILED = "AUTH_1005"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_DNS_RESOLUTION_FAILED = "NETWORK_2003"
    NETWORK_SSL_ERROR = "NETWORK_2004"
    NETWORK_INVALID_RESPONSE = "NETWORK_2005"

    # HTTP Errors (3000-3099)
    HTTP_BAD_REQUEST = "HTTP_3001"
    HTTP_FORBIDDEN = "HTTP_3002"
    HTTP_NOT_FOUND = "HTTP_3003"
    HTTP_CONFLICT = "HTTP_3004"
    HTTP_SERVER_ERROR = "HTTP_3005"
    HTTP_UNEXPECTED_STATUS = "HTTP_3006"

    # Validation Errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"

    # Credential Storage Errors (5000-5099)
    STORAGE_READ_FAILED = "STORAGE_5001"
    STORAGE_WRITE_FAILED = "STORAGE_5002"
    STORAGE_REMOVE_FAILED = "STORAGE_5003"

    # Configuration Errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RECONNECT = "reconnect"
    SIGN_IN = "sign_in"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class StorefrontClientError(Exception):
    """
    Base exception class for all Storefront API Client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class AuthenticationError(StorefrontClientError):
    """Authentication related errors (the AuthError family)."""

    def __init__(self, message: str, error_code: ErrorCode, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.SIGN_IN])
        super().__init__(message=message, error_code=error_code, **kwargs)


class AuthRejectedError(AuthenticationError):
    """The server rejected the credential and no refresh was attempted."""

    def __init__(self, message: str = "Credential rejected by server", url: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if url:
            context['url'] = url
        kwargs.setdefault('error_code', ErrorCode.AUTH_CREDENTIAL_REJECTED)
        super().__init__(message, context=context, **kwargs)


class RefreshFailedError(AuthenticationError):
    """
    The renewal call was rejected, errored, or timed out.

    Terminal for every caller waiting on the same renewal; the embedding
    application should clear its session state and send the user to sign-in.
    """

    def __init__(self, message: str = "Session expired, please sign in again", **kwargs):
        kwargs.setdefault('error_code', ErrorCode.AUTH_REFRESH_FAILED)
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)
        super().__init__(message, **kwargs)


class RetryExhaustedError(AuthenticationError):
    """Still unauthorized after a successful refresh and one replay."""

    def __init__(self, message: str = "Request still unauthorized after credential refresh",
                 url: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if url:
            context['url'] = url
        kwargs.setdefault('error_code', ErrorCode.AUTH_RETRY_EXHAUSTED)
        kwargs.setdefault('recovery_actions', [RecoveryAction.CONTACT_ADMIN])
        super().__init__(message, context=context, **kwargs)


class NetworkError(StorefrontClientError):
    """Network and communication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class HTTPStatusError(StorefrontClientError):
    """Non-success HTTP response other than a credential rejection."""

    def __init__(self, message: str, status: int, url: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        context['status'] = status
        if url:
            context['url'] = url

        self.status = status
        super().__init__(
            message=message,
            error_code=status_to_error_code(status),
            severity=ErrorSeverity.HIGH if status >= 500 else ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.RETRY] if status >= 500 else [RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class ValidationError(StorefrontClientError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class TokenStorageError(StorefrontClientError):
    """Durable credential storage failures."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_READ_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.IGNORE],
            **kwargs
        )


class ConfigurationError(StorefrontClientError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
                 config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def status_to_error_code(status: int) -> ErrorCode:
    """Map an HTTP status code to the closest error code."""
    code_mapping = {
        400: ErrorCode.HTTP_BAD_REQUEST,
        403: ErrorCode.HTTP_FORBIDDEN,
        404: ErrorCode.HTTP_NOT_FOUND,
        409: ErrorCode.HTTP_CONFLICT,
    }
    if status >= 500:
        return ErrorCode.HTTP_SERVER_ERROR
    return code_mapping.get(status, ErrorCode.HTTP_UNEXPECTED_STATUS)


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> StorefrontClientError:
    """
    Convert a generic exception to a structured StorefrontClientError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured StorefrontClientError
    """
    if isinstance(exception, StorefrontClientError):
        return exception

    if isinstance(exception, (asyncio.TimeoutError, TimeoutError)):
        return NetworkError(str(exception) or "Operation timed out",
                            error_code=ErrorCode.NETWORK_TIMEOUT, context=context, cause=exception)

    if isinstance(exception, ConnectionError):
        return NetworkError(str(exception), error_code=ErrorCode.NETWORK_CONNECTION_FAILED,
                            context=context, cause=exception)

    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context, cause=exception)

    return StorefrontClientError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
