"""Configuration management with validation.

Poll budgets are explicit configuration rather than module constants so that
callers can tune how long a reconciliation pass may wait per environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_API_URL = "https://vapi2.netactuate.com/api/"
DEFAULT_HTTP_TIMEOUT_SECONDS = 60

# Server status and job waits: 100 attempts at 5s, roughly 8 minutes
DEFAULT_POLL_ATTEMPTS = 100
DEFAULT_POLL_INTERVAL_SECONDS = 5.0

# Reads right after a create can fail with "mbpkgid must be a valid mbpkgid"
DEFAULT_STATUS_ERROR_GRACE = 5

# Peering sessions must clear within 2 minutes
DEFAULT_DRAIN_ATTEMPTS = 24

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB, also bounds the state file

MAX_POLL_ATTEMPTS = 10_000
MAX_POLL_INTERVAL_SECONDS = 600


@dataclass(frozen=True)
class PollPolicy:
    """Attempt budget for a single wait.

    Attributes:
        max_attempts: Number of times the condition is checked.
        interval_seconds: Sleep between two consecutive checks.
        early_error_grace: Number of leading attempts on which remote
            errors are swallowed and retried.
    """

    max_attempts: int = DEFAULT_POLL_ATTEMPTS
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    early_error_grace: int = 0

    @property
    def budget_seconds(self) -> float:
        """Upper bound on time spent sleeping during one wait."""
        return max(self.max_attempts - 1, 0) * self.interval_seconds

    def validate(self, name: str) -> list[str]:
        """Return validation errors for this policy, prefixed with its name."""
        errors: list[str] = []
        if not (1 <= self.max_attempts <= MAX_POLL_ATTEMPTS):
            errors.append(f"{name} attempts must be between 1 and {MAX_POLL_ATTEMPTS}")
        if not (0 <= self.interval_seconds <= MAX_POLL_INTERVAL_SECONDS):
            errors.append(
                f"{name} interval must be between 0 and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )
        if self.early_error_grace < 0:
            errors.append(f"{name} error grace cannot be negative")
        elif self.early_error_grace > self.max_attempts:
            errors.append(f"{name} error grace cannot exceed its attempts")
        return errors


@dataclass(frozen=True)
class Config:
    """Engine configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    api_key: str = ""
    api_url: str = DEFAULT_API_URL
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS

    status_poll: PollPolicy = field(
        default_factory=lambda: PollPolicy(early_error_grace=DEFAULT_STATUS_ERROR_GRACE)
    )
    job_poll: PollPolicy = field(default_factory=PollPolicy)
    drain_poll: PollPolicy = field(
        default_factory=lambda: PollPolicy(max_attempts=DEFAULT_DRAIN_ATTEMPTS)
    )

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.api_url.startswith(("http://", "https://")):
            errors.append(f"NETACTUATE_API_URL must be an http(s) URL: {self.api_url}")

        if self.http_timeout_seconds < 1:
            errors.append("NETACTUATE_HTTP_TIMEOUT must be at least 1 second")

        errors.extend(self.status_poll.validate("STATUS_POLL"))
        errors.extend(self.job_poll.validate("JOB_POLL"))
        errors.extend(self.drain_poll.validate("DRAIN_POLL"))

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def require_api_key(self) -> str:
        """Return the API key or fail with a hint on where to set it."""
        if not self.api_key:
            raise ConfigurationError(
                "Unable to find NetActuate API key. It can be set with the "
                "NETACTUATE_API_KEY environment variable or the --api-key option"
            )
        return self.api_key

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            NETACTUATE_API_KEY: API key (required for remote calls)
            NETACTUATE_API_URL: API base URL (default: public v2 endpoint)
            NETACTUATE_HTTP_TIMEOUT: Per-request timeout in seconds (default: 60)
            STATUS_POLL_ATTEMPTS / STATUS_POLL_INTERVAL / STATUS_POLL_GRACE
            JOB_POLL_ATTEMPTS / JOB_POLL_INTERVAL
            DRAIN_POLL_ATTEMPTS / DRAIN_POLL_INTERVAL
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        return cls(
            api_key=os.environ.get("NETACTUATE_API_KEY", ""),
            api_url=os.environ.get("NETACTUATE_API_URL") or DEFAULT_API_URL,
            http_timeout_seconds=get_int("NETACTUATE_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
            status_poll=PollPolicy(
                max_attempts=get_int("STATUS_POLL_ATTEMPTS", DEFAULT_POLL_ATTEMPTS),
                interval_seconds=get_float("STATUS_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
                early_error_grace=get_int("STATUS_POLL_GRACE", DEFAULT_STATUS_ERROR_GRACE),
            ),
            job_poll=PollPolicy(
                max_attempts=get_int("JOB_POLL_ATTEMPTS", DEFAULT_POLL_ATTEMPTS),
                interval_seconds=get_float("JOB_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            ),
            drain_poll=PollPolicy(
                max_attempts=get_int("DRAIN_POLL_ATTEMPTS", DEFAULT_DRAIN_ATTEMPTS),
                interval_seconds=get_float("DRAIN_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            ),
        )
