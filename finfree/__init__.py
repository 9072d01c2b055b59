"""
FinFree - Source Package

A personal ledger for expenses, income and transfers between accounts,
with a local replica kept consistent with an optional spreadsheet copy.

DESIGN PRINCIPLES:
1. Local data is never lost on a failed sync
2. Balances are derived, never stored
3. Divergence is resolved by rule, not by asking the user
4. Every sync step is auditable
5. Remote transport is swappable
"""

__version__ = "1.0.0"
__author__ = "FinFree Team"
