"""
One refresh cycle: fetch -> normalize -> upsert -> rebuild summary image.

Only one cycle runs at a time per process; a second trigger while one is in
flight is rejected with RefreshInProgress instead of interleaving writes.
"""
import enum
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from asgiref.sync import sync_to_async

from . import utils
from .exceptions import (
    ArtifactRenderError, ExternalSourceUnavailable, RecordProcessingError, RefreshInProgress,
)
from .normalizer import normalize
from .sources import SourceFetcher
from .store import CacheStore
from .summary import ArtifactSlot, SummaryArtifactBuilder


logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 5


class CycleState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FETCH_FAILED = "fetch_failed"
    NORMALIZING = "normalizing"
    UPSERTING = "upserting"
    ARTIFACT_BUILDING = "artifact_building"


@dataclass
class CycleReport:
    total_fetched: int
    upserted: int
    skipped: int
    generated_at: datetime
    errors: List[dict] = field(default_factory=list)


class SingleFlight:
    """Non-blocking process-wide mutex; works across threads and event loops."""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def busy(self):
        return self._lock.locked()

    @contextmanager
    def hold(self):
        if not self._lock.acquire(blocking=False):
            raise RefreshInProgress("A refresh cycle is already running")
        try:
            yield
        finally:
            self._lock.release()


class RefreshOrchestrator:

    def __init__(self, store, fetcher, builder, slot, estimator=utils.estimate_gdp, guard=None):
        self.store = store
        self.fetcher = fetcher
        self.builder = builder
        self.slot = slot
        self.estimator = estimator
        self.guard = guard or SingleFlight()
        self.state = CycleState.IDLE

    def _enter(self, state):
        logger.debug("Refresh cycle %s -> %s", self.state.value, state.value)
        self.state = state

    async def run_cycle(self):
        with self.guard.hold():
            try:
                return await self._run()
            finally:
                self._enter(CycleState.IDLE)

    async def _run(self):
        generated_at = utils.get_now()
        logger.info("Refresh cycle started")

        self._enter(CycleState.FETCHING)
        try:
            raw_countries, rate_table = await self.fetcher.fetch_all()
        except ExternalSourceUnavailable:
            self._enter(CycleState.FETCH_FAILED)
            raise

        self._enter(CycleState.NORMALIZING)
        records, errors = [], []
        for raw in raw_countries:
            try:
                records.append(normalize(raw, rate_table, self.estimator))
            except RecordProcessingError as exc:
                name = raw.get("name") if isinstance(raw, dict) else None
                logger.warning("Skipping directory entry %r: %s", name, exc.details)
                errors.append({"name": name, "details": exc.details})

        # StorageError propagates: the batch is rolled back and no image is built.
        self._enter(CycleState.UPSERTING)
        outcomes = await self.store.upsert_many(records, refreshed_at=generated_at)
        upserted = 0
        for outcome in outcomes:
            if outcome.ok:
                upserted += 1
            else:
                errors.append({"name": outcome.name, "details": outcome.reason})

        self._enter(CycleState.ARTIFACT_BUILDING)
        await self._publish_summary(records, generated_at)

        report = CycleReport(
            total_fetched=len(raw_countries),
            upserted=upserted,
            skipped=len(raw_countries) - upserted,
            generated_at=generated_at,
            errors=errors[:MAX_REPORTED_ERRORS],
        )
        logger.info(
            "Refresh cycle finished: fetched=%d upserted=%d skipped=%d",
            report.total_fetched, report.upserted, report.skipped,
        )
        return report

    async def _publish_summary(self, records, generated_at):
        def render_and_swap():
            self.slot.write(self.builder.build(records, generated_at))

        try:
            await sync_to_async(render_and_swap, thread_sensitive=False)()
        except ArtifactRenderError:
            logger.error("Summary image was not regenerated", exc_info=True)


def build_orchestrator():
    return RefreshOrchestrator(
        store=CacheStore(),
        fetcher=SourceFetcher.from_settings(),
        builder=SummaryArtifactBuilder(),
        slot=ArtifactSlot(),
    )
