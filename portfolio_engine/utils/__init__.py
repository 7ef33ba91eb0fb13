"""
Generic utility functions shared across modules.

Includes time/clock abstractions, return calculations, logging setup,
and error classes.
"""
