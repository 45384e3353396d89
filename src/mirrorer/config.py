"""Configuration for the mirror and drift-check processes, read from the environment."""

import os
import re
from datetime import timedelta
from typing import Mapping, Optional
from urllib.parse import urlsplit
from pydantic import BaseModel, Field, ValidationError, field_validator

DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}


class ConfigError(ValueError):
    """Configuration could not be parsed or is invalid."""


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """
    Parse a duration such as ``10s``, ``4h``, ``1h30m`` or plain seconds.

    Raises:
        ValueError: If the value is not a duration
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = value.strip()
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    position = 0
    seconds = 0.0
    for match in DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * DURATION_UNITS[match.group(2)]
        position = match.end()

    if not text or position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def split_list(value: Optional[str]) -> list[str]:
    """Split a comma separated environment value, dropping empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_headers(value: Optional[str]) -> dict[str, str]:
    """Parse ``Name:value,Other:value`` into a header dict."""
    headers = {}
    for item in split_list(value):
        name, sep, header_value = item.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"invalid header: {item!r}")
        headers[name.strip()] = header_value.strip()
    return headers


def _check_url(value: str, allow_empty: bool = True) -> str:
    if not value and allow_empty:
        return value
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"invalid URL: {value!r}")
    return value


class MirrorConfig(BaseModel):
    """Configuration for the crawl-and-upload process."""

    site: str = ""
    allowed_domains: list[str] = Field(default_factory=list)
    user_agent: str = "govuk-mirror-bot"
    headers: dict[str, str] = Field(default_factory=dict)
    concurrency: int = Field(default=10, ge=1)
    url_rules: list[re.Pattern] = Field(default_factory=list)
    disallowed_url_rules: list[re.Pattern] = Field(default_factory=list)
    skip_validation: bool = False
    metric_refresh_interval: timedelta = timedelta(seconds=10)
    refresh_interval: timedelta = timedelta(hours=4)
    async_: bool = True
    s3_bucket_name: str = ""
    pushgateway_url: str = ""
    mirror_freshness_url: str = ""
    mirror_availability_url: str = ""
    backends: list[str] = Field(default_factory=list)
    mirror_dir: str = "."
    status_check_port: int = Field(default=9090, ge=1, le=65535)

    @field_validator("url_rules", "disallowed_url_rules", mode="before")
    @classmethod
    def _compile_rules(cls, value):
        if isinstance(value, str):
            value = split_list(value)
        return [re.compile(rule) if isinstance(rule, str) else rule for rule in value]

    @field_validator("metric_refresh_interval", "refresh_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value):
        return parse_duration(value)

    @field_validator("site", "pushgateway_url", "mirror_freshness_url", "mirror_availability_url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        return _check_url(value)

    @property
    def workers(self) -> int:
        """Number of parallel fetches the crawl may run."""
        return self.concurrency if self.async_ else 1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MirrorConfig":
        """
        Build configuration from environment variables.

        Raises:
            ConfigError: If any value is invalid
        """
        env = os.environ if environ is None else environ
        values: dict = {
            "site": env.get("SITE", ""),
            "allowed_domains": split_list(env.get("ALLOWED_DOMAINS")),
            "backends": split_list(env.get("BACKENDS")),
            "url_rules": env.get("URL_RULES", ""),
            "disallowed_url_rules": env.get("DISALLOWED_URL_RULES", ""),
            "s3_bucket_name": env.get("S3_BUCKET_NAME", ""),
            "pushgateway_url": env.get("PUSHGATEWAY_URL") or env.get("PROMETHEUS_PUSHGATEWAY_URL", ""),
            "mirror_freshness_url": env.get("MIRROR_FRESHNESS_URL", ""),
            "mirror_availability_url": env.get("MIRROR_AVAILABILITY_URL", ""),
        }
        optional = {
            "user_agent": "USER_AGENT",
            "concurrency": "CONCURRENCY",
            "skip_validation": "SKIP_VALIDATION",
            "metric_refresh_interval": "METRIC_REFRESH_INTERVAL",
            "refresh_interval": "REFRESH_INTERVAL",
            "async_": "ASYNC",
            "mirror_dir": "MIRROR_DIR",
            "status_check_port": "STATUS_CHECK_PORT",
        }
        for field, key in optional.items():
            if env.get(key):
                values[field] = env[key]

        try:
            values["headers"] = parse_headers(env.get("HEADERS"))
            return cls(**values)
        except (ValidationError, ValueError, re.error) as e:
            raise ConfigError(f"invalid mirror configuration: {e}") from e


class DriftCheckConfig(BaseModel):
    """Configuration for the drift-check process."""

    site: str
    compare_top_unsampled_count: int = Field(default=100, ge=0)
    compare_remaining_sampled_count: int = Field(default=100, ge=0)
    slack_webhook: str = ""
    athena_table: str = "fastly_logs.govuk_www"
    athena_workgroup: str = ""
    random_seed: Optional[int] = None

    @field_validator("site")
    @classmethod
    def _valid_site(cls, value: str) -> str:
        return _check_url(value, allow_empty=False)

    @field_validator("slack_webhook")
    @classmethod
    def _valid_webhook(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("athena_table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        if not re.fullmatch(r"[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)?", value):
            raise ValueError(f"invalid table name: {value!r}")
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DriftCheckConfig":
        """
        Build configuration from environment variables.

        Raises:
            ConfigError: If any value is invalid
        """
        env = os.environ if environ is None else environ
        values: dict = {"site": env.get("SITE", "")}
        optional = {
            "compare_top_unsampled_count": "COMPARE_TOP_UNSAMPLED_COUNT",
            "compare_remaining_sampled_count": "COMPARE_REMAINING_SAMPLED_COUNT",
            "slack_webhook": "SLACK_WEBHOOK",
            "athena_table": "ATHENA_TABLE",
            "athena_workgroup": "ATHENA_WORKGROUP",
            "random_seed": "RANDOM_SEED",
        }
        for field, key in optional.items():
            if env.get(key):
                values[field] = env[key]

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"invalid drift-check configuration: {e}") from e
