#!/usr/bin/env python3
"""
Loan Ledger Entry Point

Starts the FastAPI server with the loan accounting core.
"""

import sys

import uvicorn

from loan_ledger.api import create_app
from loan_ledger.config import get_config
from loan_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    logger.info("Starting loan ledger API on %s:%d", config.api_host, config.api_port)

    try:
        uvicorn.run(create_app(), host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down loan ledger API")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
