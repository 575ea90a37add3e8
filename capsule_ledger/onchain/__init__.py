"""
On-chain access: capsule account decoding, ledger JSON-RPC, indexer API.
"""

from capsule_ledger.onchain.account_decoder import (
    CapsuleSnapshot,
    decode_capsule_account,
    decode_program_accounts,
    encode_capsule_account,
)
from capsule_ledger.onchain.indexer_client import IndexerClient
from capsule_ledger.onchain.rpc_client import SolanaRpcClient

__all__ = [
    "CapsuleSnapshot",
    "IndexerClient",
    "SolanaRpcClient",
    "decode_capsule_account",
    "decode_program_accounts",
    "encode_capsule_account",
]
