#!/usr/bin/env python3
"""
Accrual Ledger Entry Point

Starts the FastAPI server with the interest-accruing ledger and escrow vault.
Host, port and storage come from ACCRUAL_* environment variables.
"""

import sys

from accrual_ledger.api import run_server
from accrual_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Accrual Ledger...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"Rate policy: {config.rate_direction}, initial rate {config.initial_global_rate}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Accrual Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
