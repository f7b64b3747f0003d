"""Generation manifests and rsync output classification."""

from .classifier import ClassifiedLine, LineKind, OutputClassifier
from .manifest_store import MANIFEST_NAME, ManifestStore

__all__ = [
    "MANIFEST_NAME",
    "ClassifiedLine",
    "LineKind",
    "ManifestStore",
    "OutputClassifier",
]
