"""Environment-driven engine configuration."""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

# SpendPermissionManager deployment on Base Sepolia.
DEFAULT_MANAGER_ADDRESS = "0xf85210B21cC50302F477BA56686d2019dC9b67Ad"
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
DEFAULT_ADVISORY_FEE = 10**15

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when an environment value is missing or malformed."""


@dataclass(frozen=True)
class EngineConfig:
    db_path: str = "data/sip.db"
    rpc_url: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    manager_address: str = DEFAULT_MANAGER_ADDRESS
    advisory_url: Optional[str] = None
    advisory_timeout: float = 30.0
    advisory_fee: int = DEFAULT_ADVISORY_FEE
    cron_secret: Optional[str] = field(default=None, repr=False)
    confirmation_timeout: float = 120.0
    approval_grace_seconds: float = 5.0
    approval_attempts: int = 3
    propagation_delay: float = 2.0
    spend_retries: int = 2
    spend_retry_delay: float = 3.0
    lease_ttl: int = 1800
    scheduler_workers: int = 4
    log_level: str = "INFO"

    @property
    def run_budget(self) -> float:
        """Longest a single execution can block: advisory call plus fee and withdrawal."""

        approval = self.approval_attempts * (
            self.confirmation_timeout + self.approval_grace_seconds + self.propagation_delay
        )
        spend = (self.spend_retries + 1) * (self.confirmation_timeout + self.spend_retry_delay)
        return self.advisory_timeout + 2 * (approval + spend)


def check_lease_budget(config: EngineConfig) -> None:
    if config.lease_ttl < config.run_budget:
        raise ConfigError(
            f"LEASE_TTL ({config.lease_ttl}s) must cover the worst-case run of "
            f"{config.run_budget:.0f}s; raise it or lower the confirmation and retry settings."
        )


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """Load ``.env`` (without overriding the process environment) and parse it."""

    load_dotenv(env_file)
    return config_from_env(os.environ)


def config_from_env(env: Mapping[str, str]) -> EngineConfig:
    defaults = EngineConfig()
    log_level = env.get("LOG_LEVEL", defaults.log_level).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}.")

    config = EngineConfig(
        db_path=env.get("SIP_DB_PATH") or defaults.db_path,
        rpc_url=env.get("RPC_URL") or None,
        private_key=env.get("SERVER_WALLET_PRIVATE_KEY") or None,
        manager_address=env.get("SPEND_PERMISSION_MANAGER_ADDRESS") or defaults.manager_address,
        advisory_url=env.get("ADVISORY_URL") or None,
        advisory_timeout=_float(env, "ADVISORY_TIMEOUT", defaults.advisory_timeout, minimum=0.1),
        advisory_fee=_int(env, "ADVISORY_FEE", defaults.advisory_fee, minimum=0),
        cron_secret=env.get("CRON_SECRET") or None,
        confirmation_timeout=_float(
            env, "CONFIRMATION_TIMEOUT", defaults.confirmation_timeout, minimum=0.1
        ),
        approval_grace_seconds=_float(
            env, "APPROVAL_GRACE_SECONDS", defaults.approval_grace_seconds, minimum=0
        ),
        approval_attempts=_int(env, "APPROVAL_ATTEMPTS", defaults.approval_attempts, minimum=1),
        propagation_delay=_float(env, "PROPAGATION_DELAY", defaults.propagation_delay, minimum=0),
        spend_retries=_int(env, "SPEND_RETRIES", defaults.spend_retries, minimum=0),
        spend_retry_delay=_float(env, "SPEND_RETRY_DELAY", defaults.spend_retry_delay, minimum=0),
        lease_ttl=_int(env, "LEASE_TTL", defaults.lease_ttl, minimum=1),
        scheduler_workers=_int(env, "SCHEDULER_WORKERS", defaults.scheduler_workers, minimum=1),
        log_level=log_level,
    )
    check_lease_budget(config)
    return config


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _int(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}.")
    return value


def _float(env: Mapping[str, str], name: str, default: float, minimum: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}.") from exc
    if value != value or value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}.")
    return value
