#!/usr/bin/env python3
"""
Loan Engine Entry Point

Starts the FastAPI server with host, port and storage taken from the
LOAN_ENGINE_* environment.
"""

import sys

from loan_engine.api import run_server
from loan_engine.config import get_config


if __name__ == "__main__":
    config = get_config()
    print(f"Starting Loan Engine ({config.storage_backend} storage)")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down Loan Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
