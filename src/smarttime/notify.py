"""User-visible notifications.

Events the user has to act on (repository corruption, dead-lettered
requests, failed backup pushes) are logged *and* printed to stderr through
Rich, so they surface even when logging is not configured.
"""

from __future__ import annotations

import logging

from rich.console import Console

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def warn(message: str) -> None:
    """Log and display a warning."""
    logger.warning(message)
    console.print(f"[yellow]⚠️  SmartTime:[/yellow] {message}")


def error(message: str) -> None:
    """Log and display an error."""
    logger.error(message)
    console.print(f"[red]❌ SmartTime:[/red] {message}")
