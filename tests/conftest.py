"""Pytest fixtures for guardian tests.

``InMemoryStore`` stands in for ``PipelineStore``: same repository
attributes and method names, state kept in dicts, and ``transaction()``
restoring a snapshot when the block raises.
"""

import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from guardian.analysis.classifier import ComplianceClassifier
from guardian.analysis.schemas import AnalysisOutput
from guardian.audit.schemas import ActorType, AuditEvent, AuditEventType, EntityType
from guardian.connectors.base import BaseConnector
from guardian.connectors.registry import ConnectorRegistry
from guardian.content.schemas import (
    AnalysisResult,
    ContentItem,
    ContentRevision,
    ContentType,
)
from guardian.ingestion.schemas import (
    FETCH_STATUS_OK,
    FetchedItem,
    IngestionItem,
    IngestionRun,
    NormalizedItem,
    RunStatus,
    RunType,
)
from guardian.sources.schemas import Channel, Source

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@dataclass
class StoreState:
    sources: dict[str, Source] = field(default_factory=dict)
    runs: dict[str, IngestionRun] = field(default_factory=dict)
    items: list[IngestionItem] = field(default_factory=list)
    content_items: dict[str, ContentItem] = field(default_factory=dict)
    revisions: dict[str, ContentRevision] = field(default_factory=dict)
    results: list[AnalysisResult] = field(default_factory=list)
    audit: list[AuditEvent] = field(default_factory=list)
    counter: int = 0

    def next_id(self, prefix: str) -> str:
        self.counter += 1
        return f"{prefix}-{self.counter}"


class InMemorySources:
    def __init__(self, state: StoreState):
        self._state = state

    async def create(
        self,
        channel: Channel,
        country_code: str,
        display_name: str = "",
        crawl_frequency_minutes: int | None = None,
        start_urls: list[str] | None = None,
        metadata: dict | None = None,
        is_enabled: bool = True,
    ) -> Source:
        source = Source(
            id=self._state.next_id("src"),
            channel=channel,
            country_code=country_code,
            display_name=display_name,
            crawl_frequency_minutes=crawl_frequency_minutes,
            is_enabled=is_enabled,
            start_urls=list(start_urls or []),
            metadata=dict(metadata or {}),
        )
        self._state.sources[source.id] = source
        return copy.deepcopy(source)

    async def get_by_id(self, source_id: str) -> Source | None:
        source = self._state.sources.get(source_id)
        return copy.deepcopy(source) if source else None

    async def find_due(self, now: datetime) -> list[Source]:
        return [copy.deepcopy(s) for s in self._state.sources.values() if s.is_due(now)]

    async def update_schedule(self, source_id, last_run_at, next_run_at) -> None:
        source = self._state.sources[source_id]
        source.last_run_at = last_run_at
        source.next_run_at = next_run_at


class InMemoryRuns:
    def __init__(self, state: StoreState):
        self._state = state

    async def create_run(self, source, status=RunStatus.RUNNING, started_at=None):
        run = IngestionRun(
            id=self._state.next_id("run"),
            source_id=source.id,
            run_type=RunType.for_channel(source.channel),
            channel=source.channel,
            country_code=source.country_code,
            status=status,
            started_at=started_at,
        )
        self._state.runs[run.id] = run
        return copy.deepcopy(run)

    async def get_run(self, run_id):
        run = self._state.runs.get(run_id)
        return copy.deepcopy(run) if run else None

    async def mark_running(self, run_id, started_at):
        run = self._state.runs[run_id]
        run.status = RunStatus.RUNNING
        run.started_at = run.started_at or started_at
        run.completed_at = None
        run.last_error = None

    async def update_counters(self, run_id, **counters):
        run = self._state.runs[run_id]
        for name, value in counters.items():
            if not hasattr(run, name):
                raise ValueError(f"Unknown run counters: {[name]}")
            setattr(run, name, value)

    async def finish_run(self, run_id, status, completed_at, items_failed):
        run = self._state.runs[run_id]
        run.status = status
        run.completed_at = completed_at
        run.items_failed = items_failed

    async def fail_run(self, run_id, completed_at, last_error):
        run = self._state.runs[run_id]
        run.status = RunStatus.FAILED
        run.completed_at = completed_at
        run.last_error = last_error

    async def record_items(self, run, items):
        recorded = [
            IngestionItem(
                id=self._state.next_id("item"),
                run_id=run.id,
                source_id=run.source_id,
                channel=run.channel,
                country_code=run.country_code,
                external_id=item.external_id,
                url=item.url,
                fetch_status=item.fetch_status,
                error=item.error,
            )
            for item in items
        ]
        self._state.items.extend(recorded)
        return recorded

    async def count_failed_items(self, run_id):
        return len(
            {
                i.external_id
                for i in self._state.items
                if i.run_id == run_id and i.fetch_status != FETCH_STATUS_OK
            }
        )


class InMemoryContent:
    def __init__(self, state: StoreState):
        self._state = state

    async def upsert_item(self, source, item, seen_at):
        for existing in self._state.content_items.values():
            if existing.source_id == source.id and existing.external_id == item.external_id:
                existing.last_seen_at = seen_at
                return copy.deepcopy(existing), False

        content_item = ContentItem(
            id=self._state.next_id("content"),
            source_id=source.id,
            channel=source.channel,
            country_code=source.country_code,
            content_type=ContentType.for_channel(source.channel),
            external_id=item.external_id,
            url=item.url,
            author_handle=item.author_handle,
            published_at=item.published_at,
            last_seen_at=seen_at,
        )
        self._state.content_items[content_item.id] = content_item
        return copy.deepcopy(content_item), True

    async def latest_revision_number(self, content_id):
        numbers = [
            r.revision_number
            for r in self._state.revisions.values()
            if r.content_id == content_id
        ]
        return max(numbers, default=0)

    async def create_revision(self, content_id, revision_number, item: NormalizedItem, run_id=None):
        for r in self._state.revisions.values():
            if r.content_id == content_id and r.revision_number == revision_number:
                raise ValueError("duplicate revision number")

        revision = ContentRevision(
            id=self._state.next_id("rev"),
            content_id=content_id,
            revision_number=revision_number,
            normalized_text_hash=item.normalized_text_hash,
            content_key=item.content_key,
            run_id=run_id,
            title=item.title,
            main_text=item.main_text,
            caption=item.caption,
            description=item.description,
            comment_text=item.comment_text,
            ocr_text=item.ocr_text,
            transcript=item.transcript,
            tags=list(item.tags),
        )
        self._state.revisions[revision.id] = revision
        return copy.deepcopy(revision)

    async def get_run_revision(self, content_id, run_id):
        written = [
            r
            for r in self._state.revisions.values()
            if r.content_id == content_id and r.run_id == run_id
        ]
        if not written:
            return None
        return copy.deepcopy(max(written, key=lambda r: r.revision_number))

    async def set_current_revision(self, content_id, revision_id):
        self._state.content_items[content_id].current_revision_id = revision_id

    async def get_revision_hash(self, content_id, revision_number):
        for r in self._state.revisions.values():
            if r.content_id == content_id and r.revision_number == revision_number:
                return r.normalized_text_hash
        return None

    async def get_analysis_result(self, revision_id):
        for result in reversed(self._state.results):
            if result.revision_id == revision_id:
                return result
        return None

    async def save_analysis_result(self, revision, output: AnalysisOutput, model=None, latency_ms=None):
        result = AnalysisResult(
            id=self._state.next_id("result"),
            revision_id=revision.id,
            content_id=revision.content_id,
            compliance_status=output.compliance_status,
            violations=[v.model_dump(mode="json") for v in output.violations],
            language_detected=output.language_detected,
            language_confidence=output.language_confidence,
            uncertain_reason=output.uncertain_reason,
            model=model,
            latency_ms=latency_ms,
        )
        self._state.results.append(result)
        return result


class InMemoryAudit:
    def __init__(self, state: StoreState):
        self._state = state

    async def record(
        self,
        event_type: AuditEventType,
        entity_type: EntityType,
        entity_id: str,
        actor_type: ActorType = ActorType.SYSTEM,
        message=None,
        payload=None,
        country_code=None,
        channel=None,
        actor_user_id=None,
    ) -> AuditEvent:
        event = AuditEvent(
            id=self._state.next_id("audit"),
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_type=actor_type,
            actor_user_id=actor_user_id,
            country_code=country_code,
            channel=channel,
            message=message,
            payload=payload or {},
        )
        self._state.audit.append(event)
        return event


class InMemoryStore:
    """PipelineStore replacement backed by a StoreState."""

    def __init__(self):
        self.state = StoreState()
        self.sources = InMemorySources(self.state)
        self.runs = InMemoryRuns(self.state)
        self.content = InMemoryContent(self.state)
        self.audit = InMemoryAudit(self.state)
        self.transactions = 0
        self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @asynccontextmanager
    async def transaction(self):
        if self._depth:
            yield self
            return

        snapshot = copy.deepcopy(self.state)
        self._depth += 1
        try:
            yield self
        except BaseException:
            self.state.__dict__.update(snapshot.__dict__)
            raise
        else:
            self.transactions += 1
        finally:
            self._depth -= 1

    def add_source(self, **kwargs) -> Source:
        """Insert a source directly; returns the stored object."""
        defaults = {
            "id": self.state.next_id("src"),
            "channel": Channel.WEB,
            "country_code": "IT",
            "display_name": "Example",
            "crawl_frequency_minutes": 60,
            "start_urls": ["https://example.com/"],
        }
        defaults.update(kwargs)
        source = Source(**defaults)
        self.state.sources[source.id] = source
        return source

    def events(self, event_type: AuditEventType) -> list[AuditEvent]:
        return [e for e in self.state.audit if e.event_type == event_type]


class StubConnector(BaseConnector):
    """Connector returning preset items, or raising a preset error."""

    def __init__(self, channel: Channel = Channel.WEB):
        super().__init__(rate_limit=6000)
        self._channel = channel
        self.items: list[FetchedItem] = []
        self.error: Exception | None = None
        self.calls = 0

    @property
    def channel(self) -> Channel:
        return self._channel

    async def _fetch_items(self, source: Source) -> list[FetchedItem]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [item.model_copy() for item in self.items]


class StubClassifier(ComplianceClassifier):
    """Returns ``response`` for every call and remembers the texts it saw."""

    def __init__(self, response: str = '{"complianceStatus": "COMPLIANT", "violations": []}'):
        self.response = response
        self.error: Exception | None = None
        self.texts: list[str] = []
        self.closed = False

    @property
    def model(self) -> str:
        return "stub-model"

    async def classify(self, text: str) -> str:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def web_source(memory_store: InMemoryStore) -> Source:
    return memory_store.add_source(
        start_urls=["https://example.com/a", "https://example.com/b"],
    )


@pytest.fixture
def stub_connector() -> StubConnector:
    return StubConnector()


@pytest.fixture
def registry(stub_connector: StubConnector) -> ConnectorRegistry:
    return ConnectorRegistry({Channel.WEB: stub_connector})


@pytest.fixture
def stub_classifier() -> StubClassifier:
    return StubClassifier()


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="UPDATE 1")
    return db


def fetched(external_id: str, text: str = "Some text", **kwargs) -> FetchedItem:
    """FetchedItem shorthand used across pipeline tests."""
    return FetchedItem(external_id=external_id, url=external_id, main_text=text, **kwargs)


@pytest.fixture
def make_item():
    return fetched
