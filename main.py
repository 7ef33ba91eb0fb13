"""
portfolio_engine – Main entry point.

Prints the package version and the loaded reference tables, as a quick check
that settings and the regime/scenario data resolve in this environment.
"""

from portfolio_engine import __version__
from portfolio_engine.config.reference_data import get_reference_data
from portfolio_engine.config.settings import get_settings


def main() -> None:
    """Print a short environment summary."""
    settings = get_settings()
    reference = get_reference_data()
    print(f"portfolio_engine {__version__}")
    print(f"  risk-free rate:     {settings.engine.risk_free_rate:.2%}")
    print(f"  regime table:       v{reference.regimes.version} ({len(reference.regimes.periods)} periods)")
    print(f"  stress scenarios:   {len(reference.scenarios)}")
    print("Run actions/run_portfolio_analysis.py --help for the analysis CLI.")


if __name__ == "__main__":
    main()
