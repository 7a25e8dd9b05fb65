from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

BUNDLED_ABI_PATH = str(pathlib.Path(__file__).resolve().parent / "abi" / "Lottery.json")


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Expected an integer, got {value!r}") from exc


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None or value == "":
        raise ConfigurationError(f"Missing required environment variable: {key}")
    return value


@dataclass(frozen=True)
class ChainSettings:
    rpc_url: str = ""
    contract_address: str = "0x" + "0" * 40
    abi_path: str = BUNDLED_ABI_PATH


@dataclass(frozen=True)
class ApiSettings:
    base_url: str = ""
    timeout_seconds: int = 10

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


@dataclass(frozen=True)
class CacheSettings:
    active_ttl_seconds: int = 300
    completed_ttl_seconds: int = 60 * 60 * 24
    database_url: Optional[str] = None


@dataclass(frozen=True)
class SyncSettings:
    chain: ChainSettings = field(default_factory=ChainSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    batch_size: int = 5
    page_size: int = 10

    def copy(self, **updates) -> "SyncSettings":
        return replace(self, **updates)


def load_from_environment(require_rpc: bool = True) -> SyncSettings:
    rpc_url = _require_env("RPC_URL") if require_rpc else os.getenv("RPC_URL", "")

    chain = ChainSettings(
        rpc_url=rpc_url,
        contract_address=os.getenv("LOTTERY_CONTRACT_ADDRESS", "0x" + "0" * 40),
        abi_path=os.getenv("LOTTERY_ABI_PATH") or BUNDLED_ABI_PATH,
    )

    api = ApiSettings(
        base_url=os.getenv("API__BASE_URL", "").rstrip("/"),
        timeout_seconds=_int_from_env(os.getenv("API__TIMEOUT_SECONDS"), 10),
    )

    cache = CacheSettings(
        active_ttl_seconds=_int_from_env(os.getenv("CACHE__ACTIVE_TTL_SECONDS"), 300),
        completed_ttl_seconds=_int_from_env(os.getenv("CACHE__COMPLETED_TTL_SECONDS"), 86400),
        database_url=os.getenv("CACHE__DATABASE_URL") or None,
    )

    batch_size = _int_from_env(os.getenv("BATCH_SIZE"), 5)
    page_size = _int_from_env(os.getenv("PAGE_SIZE"), 10)
    if batch_size < 1 or page_size < 1:
        raise ConfigurationError("BATCH_SIZE and PAGE_SIZE must be positive")

    return SyncSettings(
        chain=chain,
        api=api,
        cache=cache,
        batch_size=batch_size,
        page_size=page_size,
    )


@lru_cache(maxsize=1)
def load_config(dotenv_path: Optional[str] = None, require_rpc: bool = True) -> SyncSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        default_path = pathlib.Path(".env")
        if default_path.exists():
            load_dotenv(default_path)
    return load_from_environment(require_rpc=require_rpc)
