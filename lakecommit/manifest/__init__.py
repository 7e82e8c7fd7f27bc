"""Pending-manifest codec and durable side-file store."""

from lakecommit.manifest.codec import PendingManifest, decode_manifest, encode_manifest
from lakecommit.manifest.store import ManifestName, PendingManifestStore, parse_manifest_name

__all__ = [
    "ManifestName",
    "PendingManifest",
    "PendingManifestStore",
    "decode_manifest",
    "encode_manifest",
    "parse_manifest_name",
]
