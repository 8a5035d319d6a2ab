"""High-level exports for the harvester workflows."""

from .bulk_fetch import BatchResult, BulkFetcher, FetchConfig, FetchOutcome, run_batch
from .checkpoint import Checkpoint
from .credentials import Credentials, resolve_credentials
from .errors import (
    AuthenticationFailed,
    CredentialsNotFound,
    FetchFailed,
    HarvestError,
    MergeConflict,
    SessionExpired,
    VariantSwitchFailed,
)
from .merge import ConflictPolicy, merge_directory, merge_fragments
from .flatten import flatten_trees, record_id
from .metadata import extract_metadata, strip_corpus, strip_record
from .session import HarvestSession

__all__ = [
    "AuthenticationFailed",
    "BatchResult",
    "BulkFetcher",
    "Checkpoint",
    "ConflictPolicy",
    "Credentials",
    "CredentialsNotFound",
    "FetchConfig",
    "FetchFailed",
    "FetchOutcome",
    "HarvestError",
    "HarvestSession",
    "MergeConflict",
    "SessionExpired",
    "VariantSwitchFailed",
    "extract_metadata",
    "flatten_trees",
    "merge_directory",
    "merge_fragments",
    "record_id",
    "resolve_credentials",
    "run_batch",
    "strip_corpus",
    "strip_record",
]
