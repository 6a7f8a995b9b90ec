"""Per-run state passed through the pipeline stages."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Protocol

from guardian.analysis.classifier import ComplianceClassifier
from guardian.connectors.registry import ConnectorRegistry
from guardian.content.schemas import AnalysisResult, ContentItem, ContentRevision
from guardian.ingestion.schemas import FetchedItem, IngestionRun, NormalizedItem
from guardian.sources.schemas import Source

if TYPE_CHECKING:
    from guardian.pipeline.store import PipelineStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredRevision:
    """A revision written during this run and what diff decided about it."""

    content_item: ContentItem
    revision: ContentRevision
    is_new: bool
    is_changed: bool = False


class TicketSink(Protocol):
    """Receives analysis results that need human review.

    Returns True when a ticket was created or updated.
    """

    async def submit(
        self,
        ctx: "RunContext",
        stored: StoredRevision,
        result: AnalysisResult,
    ) -> bool: ...


@dataclass
class RunContext:
    """
    Everything one run knows, filled in stage by stage.

    Created by the orchestrator after loading the run; stages read what
    earlier stages produced and append their own output.
    """

    store: "PipelineStore"
    source: Source
    run: IngestionRun
    connectors: ConnectorRegistry
    classifier: ComplianceClassifier | None = None
    ticket_sink: TicketSink | None = None
    clock: Callable[[], datetime] = utc_now

    fetched_items: list[FetchedItem] = field(default_factory=list)
    normalized_items: list[NormalizedItem] = field(default_factory=list)
    stored_revisions: list[StoredRevision] = field(default_factory=list)
    changed_revisions: list[StoredRevision] = field(default_factory=list)
    analysis_results: list[AnalysisResult] = field(default_factory=list)
    tickets_created: int = 0
