"""Coordinator configuration loaded from the environment or a JSON file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from multisig_coordinator.shared.network import RetryConfig, TimeoutConfig

ENV_PREFIX = "MULTISIG_COORDINATOR_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _parse_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


@dataclass
class CoordinatorConfig:
    relay_url: str = ""
    rpc_url: str = ""
    chain_id: int = 1
    relay_api_key: str | None = None
    executor_key_env: str = "MULTISIG_EXECUTOR_PRIVATE_KEY"
    signer_timeout: float = 60.0
    timeout_config: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self):
        if self.chain_id <= 0:
            raise ValueError("chain_id must be positive")
        if self.signer_timeout <= 0:
            raise ValueError("signer_timeout must be positive")
        if self.retry_config.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

    @classmethod
    def from_environment(cls) -> "CoordinatorConfig":
        retry_config = RetryConfig()
        max_retries = _env("MAX_RETRIES")
        if max_retries is not None:
            retry_config.max_retries = _parse_int("MAX_RETRIES", max_retries)
        base_delay = _env("RETRY_BASE_DELAY")
        if base_delay is not None:
            retry_config.base_delay = _parse_float("RETRY_BASE_DELAY", base_delay)

        timeout_config = TimeoutConfig()
        read_timeout = _env("READ_TIMEOUT")
        if read_timeout is not None:
            timeout_config.read_timeout = _parse_float("READ_TIMEOUT", read_timeout)

        return cls(
            relay_url=_env("RELAY_URL", "") or "",
            rpc_url=_env("RPC_URL", "") or "",
            chain_id=_parse_int("CHAIN_ID", _env("CHAIN_ID", "1")),
            relay_api_key=_env("RELAY_API_KEY"),
            executor_key_env=_env("EXECUTOR_KEY_ENV", cls.executor_key_env)
            or cls.executor_key_env,
            signer_timeout=_parse_float(
                "SIGNER_TIMEOUT", _env("SIGNER_TIMEOUT", "60")
            ),
            timeout_config=timeout_config,
            retry_config=retry_config,
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "CoordinatorConfig":
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CoordinatorConfig":
        timeout_cfg = data.get("timeout", {})
        retry_cfg = data.get("retry", {})
        return cls(
            relay_url=data.get("relay_url", ""),
            rpc_url=data.get("rpc_url", ""),
            chain_id=_parse_int("chain_id", data.get("chain_id", 1)),
            relay_api_key=data.get("relay_api_key"),
            executor_key_env=data.get("executor_key_env", cls.executor_key_env),
            signer_timeout=_parse_float(
                "signer_timeout", data.get("signer_timeout", 60.0)
            ),
            timeout_config=TimeoutConfig(
                connect_timeout=timeout_cfg.get("connect_timeout", 5.0),
                read_timeout=timeout_cfg.get("read_timeout", 15.0),
            ),
            retry_config=RetryConfig(
                max_retries=retry_cfg.get("max_retries", 3),
                base_delay=retry_cfg.get("base_delay", 1.0),
                max_delay=retry_cfg.get("max_delay", 30.0),
                exponential_base=retry_cfg.get("exponential_base", 2.0),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "relay_url": self.relay_url,
            "rpc_url": self.rpc_url,
            "chain_id": self.chain_id,
            "executor_key_env": self.executor_key_env,
            "signer_timeout": self.signer_timeout,
            "timeout": {
                "connect_timeout": self.timeout_config.connect_timeout,
                "read_timeout": self.timeout_config.read_timeout,
            },
            "retry": {
                "max_retries": self.retry_config.max_retries,
                "base_delay": self.retry_config.base_delay,
                "max_delay": self.retry_config.max_delay,
                "exponential_base": self.retry_config.exponential_base,
            },
        }
