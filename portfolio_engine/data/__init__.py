"""
Price data contracts, validation, and panel assembly.

Validates allocations and per-ticker price frames, and aligns them onto a
shared trading calendar with coverage reporting.
"""
