"""
Core modules for the POML converter.

This package contains identities and tiers, the quota ledger, conversion
history, the session state machine and the conversion orchestrator.
"""
