"""
Capsule Ledger: lifecycle tracking for on-chain intent capsules.

Decodes capsule accounts, reconciles capsule transactions from the local
cache, the ledger RPC and the indexer API into one ordered ledger per
wallet, and aggregates fleet-wide dormancy statistics.
"""

__version__ = "0.1.0"
