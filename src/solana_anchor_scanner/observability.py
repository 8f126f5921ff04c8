"""
Logging setup and scan statistics.

Modules log through `logging.getLogger(__name__)`; nothing here is required
for the scanner to work. ScanStats is the counter side channel the engine
fills in as it goes.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Union[int, str] = "INFO") -> None:
    """Install one stream handler on the package logger."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger("solana_anchor_scanner")
    package_logger.setLevel(level)
    if not any(getattr(h, "_scanner_handler", False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._scanner_handler = True
        package_logger.addHandler(handler)


@dataclass
class ScanStats:
    """Running totals for one engine."""
    pages: int = 0                      # Pages fully processed and advanced past
    items: int = 0                      # Signatures or slots processed
    transactions: int = 0               # Transactions examined
    failed_transactions: int = 0        # Failed transactions left undecoded
    instructions_seen: int = 0          # Top-level + inner instructions examined
    records_emitted: int = 0            # Records handed to the sink
    unknown_discriminators: int = 0     # Our program, but no matching schema
    skipped_items: int = 0              # Slots/items the ledger reported as skipped
    transient_retries: int = 0          # Retried transient fetch failures
    retries_exhausted: int = 0          # Iterations abandoned after max_retries
    decode_failures: Counter = field(default_factory=Counter)   # error class name -> count

    def record_decode_failure(self, error: Exception) -> None:
        self.decode_failures[type(error).__name__] += 1

    @property
    def total_decode_failures(self) -> int:
        return sum(self.decode_failures.values())

    def summary(self) -> Dict[str, Any]:
        return {
            "pages": self.pages,
            "items": self.items,
            "transactions": self.transactions,
            "failed_transactions": self.failed_transactions,
            "instructions_seen": self.instructions_seen,
            "records_emitted": self.records_emitted,
            "unknown_discriminators": self.unknown_discriminators,
            "skipped_items": self.skipped_items,
            "transient_retries": self.transient_retries,
            "retries_exhausted": self.retries_exhausted,
            "decode_failures": dict(self.decode_failures),
        }
