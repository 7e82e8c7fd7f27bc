"""Stable constants for commit coordination behavior."""

# Snapshot-summary keys written with every table commit.
MAX_COMMITTED_EPOCH_PREFIX = "flink.max-committed-checkpoint-id."
WRITER_IDENTITY_PROPERTY = "flink.job-id"

NO_COMMITTED_EPOCH = -1
END_OF_INPUT_EPOCH = 2**63 - 1

MANIFEST_FORMAT_KEY = "lakecommit.manifest.format"
MANIFEST_FORMAT_NAME = "pending-manifest"
MANIFEST_VERSION_KEY = "lakecommit.manifest.version"
MANIFEST_SCHEMA_VERSION = 1
MANIFEST_EPOCH_KEY = "lakecommit.manifest.epoch"
MANIFEST_WRITER_KEY = "lakecommit.writer-identity"
MANIFEST_SUFFIX = ".parquet"

STATE_SCHEMA_VERSION = 1
LOCATION_MANIFEST = "manifest"
LOCATION_INLINE = "inline"

STATE_IDLE = "idle"
STATE_ACCUMULATING = "accumulating"
STATE_AWAITING_COMPLETION = "awaiting_completion"
STATE_CLOSED = "closed"
