"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import portfolio_engine...' works,
and resets the process-wide settings and reference-table caches around every
test so environment changes in one test never leak into another.
"""
import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from portfolio_engine.config.reference_data import reset_reference_data  # noqa: E402
from portfolio_engine.config.settings import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_global_caches():
    reset_settings()
    reset_reference_data()
    yield
    reset_settings()
    reset_reference_data()
