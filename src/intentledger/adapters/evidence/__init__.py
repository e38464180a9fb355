"""Evidence inventory adapter."""

from __future__ import annotations

from .manifest import (
    DEFAULT_MANIFEST_NAME,
    EvidenceManifestError,
    JsonManifestEvidenceProvider,
    load_manifest,
)

__all__ = [
    "DEFAULT_MANIFEST_NAME",
    "EvidenceManifestError",
    "JsonManifestEvidenceProvider",
    "load_manifest",
]
