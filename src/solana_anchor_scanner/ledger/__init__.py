"""
Ledger Access

Clients the scanner reads from, and the model they return:
- LedgerClient interface with classified errors
- RpcLedger for JSON-RPC endpoints
- LocalLedger, an in-process ledger, and the transaction layout it accepts
"""

from .base import LedgerClient
from .local import LocalLedger
from .models import (
    BlockDetail, LedgerInstruction, ProgramAccount, RawInstruction,
    SignatureInfo, TransactionDetail,
)
from .rpc import RpcLedger, classify_rpc_error
from .transactions import (
    AccountMeta, CompiledInstruction, Instruction, MessageHeader, TransactionBuilder, TransactionMessage,
)

__all__ = [
    'LedgerClient', 'LocalLedger', 'RpcLedger', 'classify_rpc_error',
    'BlockDetail', 'LedgerInstruction', 'ProgramAccount', 'RawInstruction',
    'SignatureInfo', 'TransactionDetail',
    'AccountMeta', 'CompiledInstruction', 'Instruction', 'MessageHeader', 'TransactionBuilder',
    'TransactionMessage',
]
