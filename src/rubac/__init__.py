"""rubac - generation based rsync backups.

Keeps a rotating set of hardlinked backup generations per client, with
manifests to search and restore from.
"""

__version__ = "0.9.1"

from . import exceptions, logging

__all__ = ["exceptions", "logging"]
