"""Tests for the exception hierarchy and broker error classification."""

import asyncio

import pytest

from simple_kafka_consumer.common.exceptions import (
    AuthError,
    ConfigurationError,
    ConnectivityError,
    ConsumerError,
    DeliveryError,
    ErrorCategory,
    SessionStateError,
    classify_exception,
    wrap_exception,
)


class KafkaConnectionError(Exception):
    """Stand-in named like aiokafka's connection error."""


class SaslAuthenticationFailedError(Exception):
    """Stand-in named like the broker's SASL rejection."""


class TestConsumerErrors:
    """Test exception attributes and categories."""

    def test_base_error(self):
        cause = ValueError("inner")
        error = ConsumerError("outer", cause=cause, context={"topic": "t1"})

        assert error.message == "outer"
        assert error.cause is cause
        assert error.context == {"topic": "t1"}
        assert error.category is ErrorCategory.UNKNOWN
        assert str(error) == "outer | Caused by: inner"

    def test_str_without_cause(self):
        assert str(ConsumerError("plain")) == "plain"

    @pytest.mark.parametrize(
        "error,category,retryable",
        [
            (ConfigurationError("bad"), ErrorCategory.PERMANENT, False),
            (SessionStateError("bad"), ErrorCategory.PERMANENT, False),
            (ConnectivityError("down"), ErrorCategory.TRANSIENT, True),
            (AuthError("denied"), ErrorCategory.AUTH, False),
            (DeliveryError("t1", 0, 1), ErrorCategory.UNKNOWN, True),
        ],
    )
    def test_categories(self, error, category, retryable):
        assert error.category is category
        assert error.is_retryable is retryable

    def test_session_state_error(self):
        error = SessionStateError("already configured", state="configured")

        assert error.state == "configured"
        assert error.context == {"state": "configured"}

    def test_delivery_error(self):
        cause = RuntimeError("boom")
        error = DeliveryError("learner-xapi", 2, 99, cause=cause)

        assert error.topic == "learner-xapi"
        assert error.partition == 2
        assert error.offset == 99
        assert error.context == {"topic": "learner-xapi", "partition": 2, "offset": 99}
        assert "learner-xapi[2]@99" in str(error)
        assert "boom" in str(error)


class TestClassifyException:
    """Test classification of raw client exceptions."""

    @pytest.mark.parametrize(
        "exc",
        [
            SaslAuthenticationFailedError("bad credentials"),
            Exception("SASL authentication failed: Invalid username or password"),
        ],
    )
    def test_auth(self, exc):
        assert classify_exception(exc) is ErrorCategory.AUTH

    @pytest.mark.parametrize(
        "exc",
        [
            KafkaConnectionError("Unable to bootstrap from [('localhost', 9092)]"),
            ConnectionRefusedError("[Errno 111] Connection refused"),
            ConnectionResetError("Connection reset by peer"),
            asyncio.TimeoutError(),
            OSError("Temporary failure in name resolution"),
        ],
    )
    def test_transient(self, exc):
        assert classify_exception(exc) is ErrorCategory.TRANSIENT

    def test_unknown(self):
        assert classify_exception(ValueError("bad value")) is ErrorCategory.UNKNOWN

    def test_consumer_error_keeps_category(self):
        assert classify_exception(ConfigurationError("bad")) is ErrorCategory.PERMANENT


class TestWrapException:
    """Test wrapping raw client exceptions."""

    def test_wraps_connection_error(self):
        exc = KafkaConnectionError("Unable to bootstrap")

        error = wrap_exception(exc, context={"group_id": "g"})

        assert isinstance(error, ConnectivityError)
        assert error.cause is exc
        assert error.context == {"group_id": "g"}

    def test_wraps_auth_error(self):
        error = wrap_exception(SaslAuthenticationFailedError("denied"))

        assert isinstance(error, AuthError)

    def test_unknown_stays_unclassified(self):
        exc = TypeError("unsupported operand")

        error = wrap_exception(exc)

        assert type(error) is ConsumerError
        assert error.category is ErrorCategory.UNKNOWN
        assert error.cause is exc
        assert not isinstance(error, ConnectivityError)

    def test_consumer_error_returned_as_is(self):
        original = ConfigurationError("bad", context={"a": 1})

        error = wrap_exception(original, context={"b": 2})

        assert error is original
        assert error.context == {"a": 1, "b": 2}
