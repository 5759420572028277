"""Console logging helper for user-facing SDK notices"""

import os
import sys

# Global verbose flag (initialized from environment)
_verbose = os.environ.get("TP_VERBOSE", "").lower() in ("1", "true")


def set_verbose(enabled: bool):
    """Enable or disable verbose console output"""
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    """Check if verbose mode is enabled"""
    return _verbose


def log(tag: str, message: str, force: bool = False):
    """
    Print a notice if verbose mode is enabled.

    Args:
        tag: Component tag (e.g., "Agent", "Queue", "Driver")
        message: Log message
        force: Print even if verbose is disabled (for errors/warnings)
    """
    if _verbose or force:
        print(f"[{tag}] {message}", file=sys.stderr, flush=True)


def outstanding(tag: str, remaining: int):
    """Print the number of reports still waiting for delivery (verbose only)."""
    if not _verbose:
        return
    print(f"\r[{tag}] {remaining} outstanding reports", end="", file=sys.stderr, flush=True)


def outstanding_done(tag: str, message: str = ""):
    """Clear the outstanding-reports line and print a completion message."""
    if not _verbose:
        return
    print(f"\r[{tag}] {message:<60}", file=sys.stderr, flush=True)
