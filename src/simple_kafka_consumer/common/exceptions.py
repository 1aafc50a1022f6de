"""
Common exception types and error classification for simple_kafka_consumer.

Provides:
- ErrorCategory enum for handling decisions
- Typed exception hierarchy for consumer errors
- Error classification utilities
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures, the adapter's reconnect or a new
                   start() may succeed (e.g., broker unreachable, timeouts)
        AUTH: Authentication rejected by the cluster (bad SASL credentials)
        PERMANENT: Won't succeed without a change (e.g., invalid configuration,
                   illegal lifecycle call)
        UNKNOWN: Unclassified errors, most commonly raised by user callbacks
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ConsumerError(Exception):
    """
    Base exception for all consumer errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether restarting the session could resolve this error."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Permanent Errors
# =============================================================================


class PermanentError(ConsumerError):
    """Base class for non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ConfigurationError(PermanentError):
    """Invalid or missing consumer configuration."""

    pass


class SessionStateError(PermanentError):
    """Lifecycle method called in a state that does not allow it."""

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause, {"state": state} if state else None)
        self.state = state


# =============================================================================
# Connectivity Errors
# =============================================================================


class TransientError(ConsumerError):
    """Base class for transient errors."""

    category = ErrorCategory.TRANSIENT


class ConnectivityError(TransientError):
    """Broker unreachable, connection dropped or fetch loop crashed."""

    pass


class AuthError(ConsumerError):
    """Cluster rejected the SASL credentials."""

    category = ErrorCategory.AUTH


# =============================================================================
# Delivery Errors
# =============================================================================


class DeliveryError(ConsumerError):
    """User message callback raised while processing a record.

    The offset of the failed record is never marked as delivered, so a
    redelivery by the broker reaches the callback again.
    """

    def __init__(
        self,
        topic: str,
        partition: int,
        offset: int,
        cause: Optional[Exception] = None,
    ):
        message = f"Callback failed for {topic}[{partition}]@{offset}"
        super().__init__(
            message,
            cause,
            {"topic": topic, "partition": partition, "offset": offset},
        )
        self.topic = topic
        self.partition = partition
        self.offset = offset


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Classify an exception raised by the broker client into an error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    if isinstance(exc, ConsumerError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    auth_markers = (
        "saslauthenticationfailed",
        "authentication",
        "unsupportedsaslmechanism",
        "illegalsaslstate",
    )
    if any(m in exc_type or m in exc_str for m in auth_markers):
        return ErrorCategory.AUTH

    connection_markers = (
        "kafkaconnectionerror",
        "connectionerror",
        "nobrokersavailable",
        "connection refused",
        "connection reset",
        "unable to bootstrap",
        "broker not available",
        "name resolution",
        "socket",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    context: Optional[dict] = None,
) -> ConsumerError:
    """
    Wrap a broker client exception in the matching ConsumerError subclass.

    Args:
        exc: Exception to wrap
        context: Additional context to include

    Returns:
        AuthError for rejected credentials, ConnectivityError for transient
        broker failures, a plain ConsumerError for anything unclassified
    """
    if isinstance(exc, ConsumerError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)
    if category == ErrorCategory.TRANSIENT:
        return ConnectivityError(str(exc), cause=exc, context=context)

    return ConsumerError(str(exc), cause=exc, context=context)
