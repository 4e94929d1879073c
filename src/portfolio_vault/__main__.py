# Main Entry Point - Local API Server
#
# Serves the vault and price API for the browser UI.
# Settings come from the environment / .env; flags override them.

import argparse
import sys
from pathlib import Path

from . import __version__
from .config import Settings


def main(argv=None):
    """Parse arguments and run the API server."""
    parser = argparse.ArgumentParser(
        prog="portfolio-vault",
        description="Portfolio Vault - encrypted personal investment tracker backend",
    )

    parser.add_argument(
        "--host",
        help="Host to bind to (default: PORTFOLIO_VAULT_HOST or 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (default: PORTFOLIO_VAULT_PORT or 3001)"
    )

    parser.add_argument(
        "--data-file",
        type=Path,
        help="Encrypted portfolio file (default: PORTFOLIO_VAULT_DATA_FILE or data/portfolio.enc)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Portfolio Vault v{__version__}"
    )

    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.data_file:
        settings.data_file = args.data_file

    from .api.main import start_api_server

    print(f"Portfolio Vault API on http://{settings.host}:{settings.port}")
    print(f"Data file: {settings.data_file}")

    try:
        start_api_server(settings)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
