"""Environment-driven settings for running a scanner against an RPC endpoint."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.decoder import Decoder
from .core.schema import SchemaRegistry
from .ledger.rpc import RpcLedger
from .observability import configure_logging
from .scanner.cursor import FileCursorStore
from .scanner.engine import ScanEngine, ScannerConfig
from .scanner.strategy import SignaturePagedStrategy, SlotRangeStrategy


class ScannerSettings(BaseSettings):
    """Scanner configuration read from `SCANNER_*` environment variables."""

    model_config = SettingsConfigDict(env_prefix="SCANNER_", extra="ignore", populate_by_name=True)

    rpc_url: str = Field(
        default="http://localhost:8899",
        validation_alias=AliasChoices("SCANNER_RPC_URL", "SOLANA_RPC_URL"),
    )
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"
    request_timeout: float = 30.0
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("SCANNER_LOG_LEVEL", "LOG_LEVEL"),
    )
    idl_path: Optional[Path] = None
    cursor_path: Optional[Path] = None
    mode: Literal["signatures", "blocks"] = "signatures"

    page_size: int = Field(default=10, ge=1)
    poll_interval: float = Field(default=0.4, ge=0)
    max_retries: int = Field(default=5, ge=0)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=10.0, ge=0)
    recent_capacity: int = Field(default=1024, ge=1)
    include_failed: bool = False
    decode_events: bool = False
    sink_timeout: float = Field(default=30.0, gt=0)
    start_at_latest: bool = True

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def to_config(self) -> ScannerConfig:
        return ScannerConfig(
            page_size=self.page_size,
            poll_interval=self.poll_interval,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
            recent_capacity=self.recent_capacity,
            include_failed=self.include_failed,
            decode_events=self.decode_events,
            sink_timeout=self.sink_timeout,
            start_at_latest=self.start_at_latest,
        )


@lru_cache(maxsize=1)
def get_settings() -> ScannerSettings:
    """Return cached settings."""
    return ScannerSettings()


def reload_settings() -> ScannerSettings:
    """Clear the cached settings and read the environment again."""
    get_settings.cache_clear()
    return get_settings()


def build_engine(settings: Optional[ScannerSettings] = None, sink=None) -> ScanEngine:
    """
    Wire an RPC-backed engine for the IDL at `settings.idl_path`, and apply
    `settings.log_level` to the package logger.

    Raises:
        ValueError: if no IDL path is configured
        SchemaLoadError: if the IDL cannot be loaded
    """
    settings = settings or get_settings()
    if settings.idl_path is None:
        raise ValueError("SCANNER_IDL_PATH is not set")

    configure_logging(settings.log_level)
    decoder = Decoder(SchemaRegistry.from_file(settings.idl_path))
    ledger = RpcLedger(settings.rpc_url, commitment=settings.commitment, timeout=settings.request_timeout)
    if settings.mode == "blocks":
        strategy = SlotRangeStrategy(ledger)
    else:
        strategy = SignaturePagedStrategy(ledger, decoder.program_id)
    store = FileCursorStore(settings.cursor_path) if settings.cursor_path is not None else None
    return ScanEngine(ledger, decoder, strategy=strategy, sink=sink,
                      config=settings.to_config(), cursor_store=store)
