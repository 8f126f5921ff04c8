"""
Transaction and Instruction Model

Enough of Solana's transaction structure to lay out Anchor calls for a
ledger:
- Instructions name a program, the accounts they touch, and opaque data
- Messages list every account once, ordered signers-first, and reference
  them by index from compiled instructions

Nothing here holds keys or signs. A message is identified by an id derived
from its serialized bytes, shaped like a signature.

Instruction data for Anchor programs comes from Decoder.encode(), so a
transaction built here decodes back to the values it was built from.

Based on: https://solana.com/docs/core/transactions
"""

import hashlib
from dataclasses import dataclass
from typing import List, Tuple

import base58

from .models import LedgerInstruction


SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


@dataclass(frozen=True)
class AccountMeta:
    """
    How an instruction wants to access one account.

    The flags decide where the account lands in the message's key list.
    """
    pubkey: str          # Account address (base58)
    is_signer: bool      # Must sign transaction
    is_writable: bool    # Can be modified

    def __str__(self) -> str:
        flags = []
        if self.is_signer:
            flags.append("signer")
        if self.is_writable:
            flags.append("writable")
        flag_str = f"({', '.join(flags)})" if flags else "(readonly)"
        return f"{self.pubkey[:8]}...{flag_str}"


@dataclass
class Instruction:
    """
    High-level instruction before compilation to indices.

    `accounts` follows the order the program expects, which for Anchor
    programs is the order of the instruction's `accounts` in the IDL.
    """
    program_id: str                # Program to invoke
    accounts: List[AccountMeta]    # Accounts with access metadata
    data: bytes                    # Instruction data (discriminator + args)

    def __str__(self) -> str:
        return f"Instruction({self.program_id[:8]}..., {len(self.accounts)} accounts, {len(self.data)} bytes)"

    def resolved(self) -> LedgerInstruction:
        """The instruction as a ledger would report it."""
        return LedgerInstruction(
            program_id=self.program_id,
            accounts=tuple(meta.pubkey for meta in self.accounts),
            data=bytes(self.data),
        )


@dataclass(frozen=True)
class MessageHeader:
    """Signer and read-only counts; tells the runtime how to treat each key."""
    num_required_signatures: int
    num_readonly_signed_accounts: int
    num_readonly_unsigned_accounts: int


@dataclass(frozen=True)
class CompiledInstruction:
    """Instruction that references accounts by their index in the message."""
    program_id_index: int
    accounts: Tuple[int, ...]
    data: bytes

    def __str__(self) -> str:
        return f"Instruction(program_id_index={self.program_id_index}, accounts={list(self.accounts)}, data_len={len(self.data)})"


@dataclass(frozen=True)
class TransactionMessage:
    """Accounts, blockhash and compiled instructions of one transaction."""
    header: MessageHeader
    account_keys: Tuple[str, ...]
    recent_blockhash: str
    instructions: Tuple[CompiledInstruction, ...]

    def serialize(self) -> bytes:
        """
        Serialize the message.

        A simplified legacy layout: one-byte counts, raw 32-byte keys, and a
        two-byte data length per instruction.
        """
        parts = [
            self.header.num_required_signatures.to_bytes(1, 'little'),
            self.header.num_readonly_signed_accounts.to_bytes(1, 'little'),
            self.header.num_readonly_unsigned_accounts.to_bytes(1, 'little'),
            len(self.account_keys).to_bytes(1, 'little'),
        ]
        for key in self.account_keys:
            parts.append(base58.b58decode(key))
        parts.append(base58.b58decode(self.recent_blockhash))

        parts.append(len(self.instructions).to_bytes(1, 'little'))
        for instruction in self.instructions:
            parts.append(instruction.program_id_index.to_bytes(1, 'little'))
            parts.append(len(instruction.accounts).to_bytes(1, 'little'))
            parts.extend(index.to_bytes(1, 'little') for index in instruction.accounts)
            parts.append(len(instruction.data).to_bytes(2, 'little'))
            parts.append(instruction.data)

        return b''.join(parts)

    def resolve(self, instruction: CompiledInstruction) -> LedgerInstruction:
        """Turn account indices back into addresses."""
        return LedgerInstruction(
            program_id=self.account_keys[instruction.program_id_index],
            accounts=tuple(self.account_keys[i] for i in instruction.accounts),
            data=instruction.data,
        )

    def resolved_instructions(self) -> Tuple[LedgerInstruction, ...]:
        return tuple(self.resolve(instruction) for instruction in self.instructions)

    @property
    def fee_payer(self) -> str:
        if not self.account_keys:
            raise ValueError("Transaction has no accounts")
        return self.account_keys[0]

    def transaction_id(self) -> str:
        """
        Identifier of the message: base58 of a 64-byte digest, the same shape as
        a signature. Identical messages share an id.
        """
        return base58.b58encode(hashlib.sha512(self.serialize()).digest()).decode()


class TransactionBuilder:
    """
    Builder for transactions.

    Orders accounts the way the runtime expects and compiles instructions to
    index form:
        1. fee payer
        2. other writable signers
        3. readonly signers
        4. writable non-signers
        5. readonly non-signers (programs usually land here)
    """

    def __init__(self, fee_payer: str, recent_blockhash: str):
        """
        Args:
            fee_payer: Account that pays transaction fees (always a writable signer)
            recent_blockhash: Recent blockhash for replay protection
        """
        self.fee_payer = fee_payer
        self.recent_blockhash = recent_blockhash
        self.instructions: List[Instruction] = []

    def add_instruction(self, instruction: Instruction) -> 'TransactionBuilder':
        """Add an instruction to the transaction (fluent interface)."""
        self.instructions.append(instruction)
        return self

    def add_instructions(self, instructions: List[Instruction]) -> 'TransactionBuilder':
        self.instructions.extend(instructions)
        return self

    def build(self) -> TransactionMessage:
        """
        Build the transaction message.

        Raises:
            ValueError: if there are no instructions
        """
        if not self.instructions:
            raise ValueError("Transaction has no instructions")

        signers = {self.fee_payer}
        writable = {self.fee_payer}
        all_accounts = {self.fee_payer}
        for instruction in self.instructions:
            all_accounts.add(instruction.program_id)
            for account in instruction.accounts:
                all_accounts.add(account.pubkey)
                if account.is_signer:
                    signers.add(account.pubkey)
                if account.is_writable:
                    writable.add(account.pubkey)

        writable_signers = sorted((signers & writable) - {self.fee_payer})
        readonly_signers = sorted(signers - writable)
        writable_non_signers = sorted(writable - signers)
        readonly_non_signers = sorted(all_accounts - signers - writable)

        account_keys = [self.fee_payer] + writable_signers + readonly_signers \
            + writable_non_signers + readonly_non_signers
        account_index = {key: i for i, key in enumerate(account_keys)}

        compiled = tuple(
            CompiledInstruction(
                program_id_index=account_index[instruction.program_id],
                accounts=tuple(account_index[meta.pubkey] for meta in instruction.accounts),
                data=bytes(instruction.data),
            )
            for instruction in self.instructions
        )

        header = MessageHeader(
            num_required_signatures=1 + len(writable_signers) + len(readonly_signers),
            num_readonly_signed_accounts=len(readonly_signers),
            num_readonly_unsigned_accounts=len(readonly_non_signers),
        )

        return TransactionMessage(
            header=header,
            account_keys=tuple(account_keys),
            recent_blockhash=self.recent_blockhash,
            instructions=compiled,
        )


