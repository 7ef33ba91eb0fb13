"""
Configuration loading and validation for engine settings and reference data.

Provides strongly typed settings objects read from environment variables and
the versioned regime/scenario/bucket tables shipped with the package.
"""
