"""Utility functions for the user provisioning tool."""
import os
import sys

_verbose = False


def is_root() -> bool:
    """Check if the script is running as root."""
    return os.geteuid() == 0


def log_info(message: str) -> None:
    """Log an informational message."""
    print(f"[INFO] {message}")


def log_action(message: str) -> None:
    """Log an action being performed."""
    print(f"  -> {message}")


def log_error(message: str) -> None:
    """Log an error message to stderr."""
    print(f"[ERROR] {message}", file=sys.stderr)


def log_debug(message: str) -> None:
    """Log a debug message, only shown in verbose mode."""
    if _verbose:
        print(f"[DEBUG] {message}")


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    global _verbose
    _verbose = verbose
