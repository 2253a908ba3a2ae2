"""
Centralized logging configuration for the order API.

Configures one stdout handler (container friendly) with a timestamp, level
and logger name, and lowers the verbosity of the HTTP client libraries that
supabase-py and the payment feed client use.
"""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger.

    Safe to call more than once: basicConfig(force=True) replaces previous
    handlers instead of stacking them.
    """
    log_format = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce verbosity from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
