"""Tests for the command line runner."""

import asyncio
import logging
from unittest.mock import patch

import pytest

from simple_kafka_consumer import __main__ as runner
from simple_kafka_consumer.common.exceptions import ConfigurationError
from simple_kafka_consumer.consumer import ConsumerSession


@pytest.fixture(autouse=True)
def cleanup_logging(monkeypatch, tmp_path):
    """Run from an empty directory and drop handlers installed by main()."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JSON_LOGS", "false")
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = runner.parse_args([])

        assert args.config is None
        assert args.metrics_port is None
        assert args.log_level == "INFO"
        assert args.log_dir is None

    def test_all_options(self):
        args = runner.parse_args(
            [
                "--config", "consumer.yaml",
                "--metrics-port", "8000",
                "--log-level", "DEBUG",
                "--log-dir", "/tmp/logs",
            ]
        )

        assert args.config == "consumer.yaml"
        assert args.metrics_port == 8000
        assert args.log_level == "DEBUG"
        assert args.log_dir == "/tmp/logs"


class TestLoadConfig:
    """Tests for choosing the configuration source."""

    def test_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("KAFKA_TOPICS", "learner-xapi")
        monkeypatch.setenv("KAFKA_CONSUMER_GROUP", "test-group")

        config = runner.load_config(None)

        assert config.topics == ["learner-xapi"]

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "consumer.yaml"
        path.write_text("kafka:\n  consumerGroup: g\n  topics: [t1]\n")

        config = runner.load_config(str(path))

        assert config.consumer_group == "g"

    def test_empty_topics_rejected(self, clean_env, monkeypatch):
        monkeypatch.setenv("KAFKA_CONSUMER_GROUP", "test-group")
        monkeypatch.setenv("KAFKA_TOPICS", "")

        with pytest.raises(ConfigurationError, match="topic"):
            runner.load_config(None)


class TestMain:
    """Tests for the main() exit codes."""

    def test_missing_config_file(self, tmp_path):
        exit_code = runner.main(
            ["--config", str(tmp_path / "missing.yaml"), "--log-dir", str(tmp_path)]
        )

        assert exit_code == 1

    def test_invalid_config(self, tmp_path, clean_env):
        """No topics configured: exits before any session is built."""
        with patch.object(runner, "ConsumerSession") as session_cls, \
                patch.object(runner.asyncio, "run") as asyncio_run:
            exit_code = runner.main(["--log-dir", str(tmp_path)])

        assert exit_code == 1
        session_cls.assert_not_called()
        asyncio_run.assert_not_called()


@pytest.mark.asyncio
class TestRunConsumer:
    """Tests for run_consumer()."""

    async def test_returns_after_crash(
        self, consumer_config, adapter_factory, adapters, wait_for
    ):
        def make_session(config):
            return ConsumerSession(config, adapter_factory=adapter_factory)

        with patch.object(runner, "ConsumerSession", side_effect=make_session):
            task = asyncio.create_task(runner.run_consumer(consumer_config))
            await wait_for(lambda: len(adapters) == 1)

            adapters[0].crash(ConnectionResetError("connection reset by peer"))
            await asyncio.wait_for(task, timeout=2)

        assert adapters[0].disconnect_calls == 1

    async def test_prints_messages(
        self, consumer_config, adapter_factory, adapters, make_record, wait_for,
        monkeypatch,
    ):
        printed = []

        def print_message(topic, offset, message):
            printed.append((topic, offset, message))

        monkeypatch.setattr(runner, "print_message", print_message)

        def make_session(config):
            return ConsumerSession(config, adapter_factory=adapter_factory)

        with patch.object(runner, "ConsumerSession", side_effect=make_session):
            task = asyncio.create_task(runner.run_consumer(consumer_config))
            await wait_for(lambda: len(adapters) == 1 and adapters[0].subscriptions)

            await adapters[0].deliver(make_record("t1", 0, 3, value=b"statement"))
            adapters[0].crash(ConnectionResetError("connection reset by peer"))
            await asyncio.wait_for(task, timeout=2)

        assert printed == [("t1", 3, "statement")]
