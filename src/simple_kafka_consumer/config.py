"""Consumer configuration from code, dicts, YAML files or environment variables."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from simple_kafka_consumer.common.exceptions import ConfigurationError

DEFAULT_BROKERS = "localhost:9092"

# camelCase option names accepted by from_dict()
_ALIASES = {
    "useSasl": "use_sasl",
    "saslUser": "sasl_user",
    "saslPass": "sasl_pass",
    "consumerGroup": "consumer_group",
    "clientId": "client_id",
    "saslMechanism": "sasl_mechanism",
    "securityProtocol": "security_protocol",
    "fromBeginning": "from_beginning",
}

_TRUE_VALUES = ("1", "true", "yes", "on")


def _split_csv(value: Union[str, List[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [item.strip() for item in value if item and item.strip()]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class ConsumerConfig:
    """Kafka connection and subscription settings for a ConsumerSession.

    brokers accepts a comma-delimited string ("k1:9092,k2:9092") or a list;
    it is normalized to a list of host:port strings.

    use_sasl=None means "enable SASL when both credentials are set".
    All timing values in milliseconds.
    """

    # Connection
    brokers: List[str] = field(default_factory=lambda: [DEFAULT_BROKERS])
    client_id: Optional[str] = None

    # SASL
    use_sasl: Optional[bool] = None
    sasl_user: Optional[str] = None
    sasl_pass: Optional[str] = field(default=None, repr=False)
    sasl_mechanism: str = "PLAIN"
    security_protocol: Optional[str] = None

    # Subscription
    consumer_group: str = ""
    topics: List[str] = field(default_factory=list)

    # Consumer behaviour
    from_beginning: bool = False
    enable_auto_commit: bool = True
    isolation_level: str = "read_committed"
    session_timeout_ms: int = 30000
    request_timeout_ms: int = 40000
    poll_timeout_ms: int = 1000

    def __post_init__(self) -> None:
        self.brokers = _split_csv(self.brokers)
        self.topics = _split_csv(self.topics)

    @property
    def sasl_enabled(self) -> bool:
        """Whether SASL authentication will be configured on the client."""
        if self.use_sasl is not None:
            return self.use_sasl
        return bool(self.sasl_user) and bool(self.sasl_pass)

    @property
    def effective_security_protocol(self) -> str:
        if self.security_protocol:
            return self.security_protocol
        return "SASL_PLAINTEXT" if self.sasl_enabled else "PLAINTEXT"

    def validate(self) -> None:
        """Check required fields.

        Raises:
            ConfigurationError: If a required field is missing or invalid
        """
        if not self.brokers:
            raise ConfigurationError("At least one broker must be specified")
        if not self.topics:
            raise ConfigurationError("At least one topic must be specified")
        if not self.consumer_group:
            raise ConfigurationError("consumer_group is required")
        if self.use_sasl and not (self.sasl_user and self.sasl_pass):
            raise ConfigurationError(
                "use_sasl is enabled but sasl_user/sasl_pass are missing",
                context={"sasl_user_set": bool(self.sasl_user)},
            )
        if self.poll_timeout_ms <= 0:
            raise ConfigurationError(
                f"poll_timeout_ms must be positive, got {self.poll_timeout_ms}"
            )

    def to_client_kwargs(self) -> Dict[str, Any]:
        """Build keyword arguments for aiokafka.AIOKafkaConsumer."""
        client_config: Dict[str, Any] = {
            "bootstrap_servers": self.brokers,
            "group_id": self.consumer_group,
            "enable_auto_commit": self.enable_auto_commit,
            "auto_offset_reset": "latest",
            "isolation_level": self.isolation_level,
            "session_timeout_ms": self.session_timeout_ms,
            "request_timeout_ms": self.request_timeout_ms,
            "security_protocol": self.effective_security_protocol,
        }
        if self.client_id:
            client_config["client_id"] = self.client_id

        if self.sasl_enabled:
            client_config["sasl_mechanism"] = self.sasl_mechanism
            client_config["sasl_plain_username"] = self.sasl_user
            client_config["sasl_plain_password"] = self.sasl_pass

        return client_config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsumerConfig":
        """Build a config from a mapping using snake_case or camelCase keys.

        Unknown keys are rejected so typos don't silently fall back to defaults.

        Raises:
            ConfigurationError: If the mapping contains unknown keys
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration option: {key}")
            kwargs[name] = value

        for flag in ("use_sasl", "from_beginning", "enable_auto_commit"):
            if kwargs.get(flag) is not None:
                kwargs[flag] = _parse_bool(kwargs[flag])

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ConsumerConfig":
        """Load configuration from a YAML file.

        The options may sit under a top-level "kafka" key or at the root.

        Raises:
            ConfigurationError: If the file is missing or not a mapping
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {path}")

        section = data.get("kafka", data)
        if not isinstance(section, dict):
            raise ConfigurationError(f"'kafka' section must be a mapping: {path}")

        return cls.from_dict(section)

    @classmethod
    def from_env(cls) -> "ConsumerConfig":
        """Load configuration from environment variables.

        Environment variables (with defaults):
            KAFKA_BROKERS: localhost:9092 (comma-separated)
            KAFKA_TOPICS: required, comma-separated
            KAFKA_CONSUMER_GROUP: required
            KAFKA_CLIENT_ID: unset
            KAFKA_USE_SASL: unset (SASL enabled when both credentials are set)
            KAFKA_SASL_USER / KAFKA_SASL_PASS: unset
            KAFKA_SASL_MECHANISM: PLAIN
            KAFKA_SECURITY_PROTOCOL: derived from SASL setting

        Validation happens in ConsumerSession.configure(), not here.
        """
        use_sasl = os.getenv("KAFKA_USE_SASL")

        return cls(
            brokers=os.getenv("KAFKA_BROKERS", DEFAULT_BROKERS),
            client_id=os.getenv("KAFKA_CLIENT_ID") or None,
            use_sasl=_parse_bool(use_sasl) if use_sasl else None,
            sasl_user=os.getenv("KAFKA_SASL_USER") or None,
            sasl_pass=os.getenv("KAFKA_SASL_PASS") or None,
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM", "PLAIN"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL") or None,
            consumer_group=os.getenv("KAFKA_CONSUMER_GROUP", ""),
            topics=os.getenv("KAFKA_TOPICS", ""),
        )
