"""
Price source abstractions and adapters.

Defines the historical price provider interface consumed by the engine and an
in-memory implementation backed by pre-loaded frames.
"""
