"""
Paper broker simulation logic.

Implements whole-share, floor-rounded fills and an append-only trade ledger
for backtesting.
"""
