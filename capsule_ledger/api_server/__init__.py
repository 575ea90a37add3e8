"""
API server package: HTTP interface over the capsule ledger and dormancy stats.
"""
