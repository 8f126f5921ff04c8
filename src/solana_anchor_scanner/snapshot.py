"""
Program account snapshots.

Decode every account a program owns, the way an indexer bootstraps before it
starts following new transactions.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from .core.decoder import Decoder
from .core.records import DecodedRecord
from .errors import DecodeError, UnknownDiscriminator
from .ledger.base import LedgerClient

logger = logging.getLogger(__name__)


@dataclass
class AccountSnapshot:
    """Decoded accounts of one program, plus the ones that did not decode."""
    program_id: str
    records: Dict[str, DecodedRecord] = field(default_factory=dict)   # address -> record
    unknown: List[str] = field(default_factory=list)                  # no matching account schema
    failed: List[Tuple[str, str]] = field(default_factory=list)       # (address, error)

    def by_schema(self, schema_name: str) -> Dict[str, DecodedRecord]:
        return {address: r for address, r in self.records.items() if r.schema_name == schema_name}

    def __len__(self) -> int:
        return len(self.records)


async def snapshot_program_accounts(ledger: LedgerClient, decoder: Decoder) -> AccountSnapshot:
    """
    Fetch and decode all accounts owned by the decoder's program.

    Accounts that are not one of the program's account types, or whose data
    does not decode, are listed rather than raised.
    """
    if not decoder.program_id:
        raise ValueError("Decoder schema has no program address")

    snapshot = AccountSnapshot(program_id=decoder.program_id)
    for account in await ledger.get_program_accounts(decoder.program_id):
        try:
            snapshot.records[account.address] = decoder.decode_account(account.data)
        except UnknownDiscriminator:
            snapshot.unknown.append(account.address)
        except DecodeError as exc:
            logger.warning("Account %s does not decode: %s", account.address, exc)
            snapshot.failed.append((account.address, str(exc)))

    logger.info("Decoded %d accounts of %s (%d unknown, %d failed)",
                len(snapshot.records), decoder.program_id, len(snapshot.unknown), len(snapshot.failed))
    return snapshot


def summarize_field(records: Iterable[DecodedRecord], field_name: str) -> Dict[Any, int]:
    """
    Count how often each value of one field occurs, most common first.

    Records without the field are ignored; unhashable values are counted by
    their repr.
    """
    counts: Counter = Counter()
    for record in records:
        if field_name not in record.fields:
            continue
        value = record.fields[field_name]
        try:
            hash(value)
        except TypeError:
            value = repr(value)
        counts[value] += 1
    return dict(counts.most_common())
