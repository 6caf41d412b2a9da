"""
SmartTime: crash-recoverable pipeline from raw file-activity events to
version-controlled daily records.

- ``smarttime.storage``: raw queue, operation mailbox, batches, git store
- ``smarttime.pipeline``: operation queue processor and periodic triggers
- ``smarttime.cli``: ``smarttime`` command line
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
