"""
Ingestion: run and item records, text fingerprints, the job queue and the
worker that executes runs.

Only schemas and the normalizer are re-exported here; import the queue,
repository and worker from their modules.
"""

from guardian.ingestion.normalizer import fingerprint, normalize_item, normalize_text
from guardian.ingestion.schemas import (
    FETCH_STATUS_OK,
    FetchedItem,
    IngestionItem,
    IngestionRun,
    NormalizedItem,
    RunStatus,
    RunType,
)

__all__ = [
    "FETCH_STATUS_OK",
    "FetchedItem",
    "IngestionItem",
    "IngestionRun",
    "NormalizedItem",
    "RunStatus",
    "RunType",
    "fingerprint",
    "normalize_item",
    "normalize_text",
]
