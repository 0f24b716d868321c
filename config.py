"""Application settings: single file, Pydantic-based.

DB selection:
  - DATABASE_URL set and non-empty -> PostgreSQL
  - DATABASE_URL absent/empty -> SQLite (DB_SQLITE_PATH, default data/bakerpay.db)
"""

import re
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _project_root() -> Path:
    """Directory holding config.py."""
    return Path(__file__).resolve().parent


def _ensure_env_loaded() -> None:
    """Load .env from the project root (then its parent). Idempotent."""
    root: Path = _project_root()
    for candidate in (root / ".env", root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)


_ensure_env_loaded()

_ENV_FILES: tuple[str, str] = (str(_project_root() / ".env"), ".env")


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str | None = Field(
        default=None,
        description="PostgreSQL DSN; when set, uses Postgres.",
        validation_alias="DATABASE_URL",
    )
    sqlite_path: str | None = Field(default="data/bakerpay.db")
    pool_size: int = Field(default=5)
    pool_timeout: int = Field(default=30)
    pool_recycle: int = Field(default=1800)

    def _use_postgres(self) -> bool:
        return bool((self.database_url or "").strip())

    def _resolved_sqlite_path(self) -> Path:
        raw: str = (self.sqlite_path or "data/bakerpay.db").strip()
        path: Path = Path(raw)
        if not path.is_absolute():
            path = (_project_root() / path).resolve()
        return path

    def _redacted_postgres_dsn(self) -> str:
        url: str = (self.database_url or "").strip()
        return re.sub(r":([^:@]+)@", r":***@", url) if url else ""

    @property
    def url(self) -> str:
        if self._use_postgres():
            return (self.database_url or "").strip()
        if self.sqlite_path == ":memory:":
            return "sqlite://"
        path = self._resolved_sqlite_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path.as_posix()}"

    def db_info_for_logging(self) -> str:
        if self._use_postgres():
            return f"PostgreSQL @ {self._redacted_postgres_dsn()}"
        return f"SQLite @ {self._resolved_sqlite_path().as_posix()}"


class ChainSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAIN_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    rpc_url: str = Field(default="http://127.0.0.1:8732")
    rpc_timeout: float = Field(default=30.0)
    retry_attempts: int = Field(default=3)
    retry_delay: float = Field(default=1.0)
    poll_interval: float = Field(default=30.0, description="Seconds between head polls")
    max_workers: int = Field(default=8, description="Parallel delegator lookups")


class BakerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BAKER_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    delegate: str = Field(default="")
    secret_key: SecretStr = Field(default=SecretStr(""))
    key_passphrase: SecretStr | None = Field(default=None)
    fee_rate: float = Field(default=0.05, ge=0, le=1)
    minimum_payment: int = Field(default=0, ge=0, description="Mutez; smaller payouts are skipped")
    blacklist: str = Field(default="", description="Comma-separated addresses never paid")
    wait_for_unfreeze: bool = Field(default=False)

    @field_validator("delegate")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @property
    def blacklist_addresses(self) -> list[str]:
        return [a.strip() for a in self.blacklist.split(",") if a.strip()]

    @property
    def passphrase(self) -> str | None:
        return self.key_passphrase.get_secret_value() if self.key_passphrase else None


class OperationSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="OPERATION_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    network_fee: int = Field(default=1420, ge=0)
    gas_limit: int = Field(default=10600, ge=0)
    storage_limit: int = Field(default=300, ge=0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BAKERPAY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="console | json")
    data_dir: Path = Field(default=Path("data"))
    fail_fast: bool = Field(default=True, description="Abort the cycle on any delegator failure")
    sort_by_address: bool = Field(default=True)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    baker: BakerSettings = Field(default_factory=BakerSettings)
    operation: OperationSettings = Field(default_factory=OperationSettings)

    def model_post_init(self, _context: object) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def snapshot(self) -> dict[str, object]:
        """Non-secret settings recorded with each payout run."""
        return {
            "fee_rate": self.baker.fee_rate,
            "minimum_payment": self.baker.minimum_payment,
            "blacklist": self.baker.blacklist_addresses,
            "wait_for_unfreeze": self.baker.wait_for_unfreeze,
            "network_fee": self.operation.network_fee,
            "gas_limit": self.operation.gas_limit,
            "storage_limit": self.operation.storage_limit,
            "fail_fast": self.fail_fast,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
