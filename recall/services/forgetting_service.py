"""
Retention and forgetting logic for memory records.

A sweep walks every record, applies the ordered forgetting rules, then
enforces per-type record limits for each owner.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import recall.config as config
from recall.config import ForgettingRules
from recall.errors import ForgettingCycleError
from recall.models import ForgettingAction, MemoryRecord, iso, utcnow
from recall.services.memory_weights import WeightCalculator
from recall.services.record_store import RecordStore

logger = config.logger


@dataclass
class ForgettingDecision:
    action: ForgettingAction
    rule: str


@dataclass
class ForgettingReport:
    scanned: int = 0
    removed: int = 0
    archived: int = 0
    kept: int = 0
    errors: int = 0
    limit_evicted: int = 0
    tokens_reclaimed: int = 0
    duration_ms: int = 0

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


def _as_archived(record: MemoryRecord) -> MemoryRecord:
    return dataclasses.replace(
        record,
        retention=dataclasses.replace(record.retention, is_archived=True),
    )


class ForgettingEngine:
    def __init__(self, store: RecordStore, calculator: WeightCalculator, rules: ForgettingRules):
        self.store = store
        self.calculator = calculator
        self.rules = rules
        self.last_report: Optional[ForgettingReport] = None

    def evaluate(self, record: MemoryRecord, now: datetime) -> ForgettingDecision:
        """First matching rule wins."""
        rules = self.rules
        max_age = self.calculator.type_config(record.memory_type).max_age
        age = record.age(now)
        unaccessed = record.since_access(now)
        archived = record.retention.is_archived
        composite = record.weights.composite

        if archived and unaccessed > rules.archived_unaccessed:
            return ForgettingDecision(ForgettingAction.remove, "archived_unaccessed")
        if age > max_age * rules.max_age_factor:
            return ForgettingDecision(ForgettingAction.remove, "exceeded_max_age")
        if composite < rules.low_composite and unaccessed > rules.low_composite_unaccessed:
            return ForgettingDecision(ForgettingAction.remove, "low_composite")
        if (
            record.metadata.response_quality < rules.low_quality
            and unaccessed > rules.low_quality_unaccessed
        ):
            return ForgettingDecision(ForgettingAction.remove, "low_quality")
        if age > max_age and not archived:
            return ForgettingDecision(ForgettingAction.archive, "expired")
        if composite < rules.archive_composite and unaccessed > rules.archive_unaccessed:
            return ForgettingDecision(ForgettingAction.archive, "low_composite_stale")
        if record.retention.access_count == 0 and age > rules.never_accessed_age:
            return ForgettingDecision(ForgettingAction.archive, "never_accessed")
        return ForgettingDecision(ForgettingAction.keep, "retained")

    def decide(self, record: MemoryRecord, now: datetime) -> ForgettingDecision:
        decision = self.evaluate(record, now)
        if decision.action == ForgettingAction.archive and not record.retention.is_archived:
            # An archived record may already qualify for removal; settle it now.
            followup = self.evaluate(_as_archived(record), now)
            if followup.action == ForgettingAction.remove:
                return followup
        return decision

    async def _remove(self, record: MemoryRecord, report: ForgettingReport) -> bool:
        if not await self.store.delete(record.id):
            return False
        report.removed += 1
        report.tokens_reclaimed += record.metadata.token_count
        return True

    async def _apply(self, record: MemoryRecord, now: datetime, report: ForgettingReport) -> ForgettingAction:
        decision = self.decide(record, now)
        if decision.action == ForgettingAction.remove:
            await self._remove(record, report)
            logger.debug("Removed memory", extra={"record_id": record.id, "rule": decision.rule})
            return ForgettingAction.remove
        if decision.action == ForgettingAction.archive and not record.retention.is_archived:
            await self.store.update(
                record.id,
                {"retention": {"is_archived": True}, "updated_at": iso(now)},
            )
            record.retention.is_archived = True
            report.archived += 1
            return ForgettingAction.archive
        report.kept += 1
        return ForgettingAction.keep

    async def _enforce_type_limits(
        self,
        survivors: list[tuple[MemoryRecord, ForgettingAction]],
        report: ForgettingReport,
    ) -> None:
        groups: dict[tuple[str, str], list[tuple[MemoryRecord, ForgettingAction]]] = defaultdict(list)
        for record, action in survivors:
            groups[(record.owner_id, record.memory_type.value)].append((record, action))

        for (owner_id, memory_type), members in groups.items():
            max_count = self.calculator.type_config(members[0][0].memory_type).max_count
            excess = len(members) - max_count
            if max_count <= 0 or excess <= 0:
                continue
            members.sort(key=lambda item: (item[0].weights.composite, item[0].created_at))
            evicted = 0
            for record, action in members[:excess]:
                try:
                    if not await self._remove(record, report):
                        continue
                except Exception as exc:
                    self._record_error(report, record.id, exc)
                    continue
                report.limit_evicted += 1
                evicted += 1
                if action == ForgettingAction.archive:
                    report.archived -= 1
                else:
                    report.kept -= 1
            logger.info(
                "Enforced memory type limit",
                extra={"owner_id": owner_id, "memory_type": memory_type, "evicted": evicted},
            )

    def _record_error(self, report: ForgettingReport, record_id: Optional[str], exc: Exception) -> None:
        error = ForgettingCycleError(record_id, str(exc))
        logger.warning(f"Forgetting cycle skipped {error}", extra={"record_id": record_id})
        report.errors += 1

    async def run(self, owner_id: Optional[str] = None, now: Optional[datetime] = None) -> ForgettingReport:
        """Run one forgetting sweep over an owner, or over every owner."""
        start = time.monotonic()
        now = now or utcnow()
        report = ForgettingReport()
        survivors: list[tuple[MemoryRecord, ForgettingAction]] = []

        for document in await self.store.documents(owner_id):
            report.scanned += 1
            try:
                record = MemoryRecord.from_document(document)
                action = await self._apply(record, now, report)
            except Exception as exc:
                self._record_error(report, document.get("id"), exc)
                continue
            if action != ForgettingAction.remove:
                survivors.append((record, action))

        if self.rules.enforce_type_limits:
            await self._enforce_type_limits(survivors, report)

        report.duration_ms = int((time.monotonic() - start) * 1000)
        self.last_report = report
        logger.info("Forgetting cycle complete", extra=report.as_dict())
        return report

    async def refresh_weights(self, owner_id: Optional[str] = None, now: Optional[datetime] = None) -> int:
        """Decay tick: recompute persisted weights of active records."""
        now = now or utcnow()
        updated = 0
        for record in await self.store.all_records(owner_id):
            if record.retention.is_archived:
                continue
            weights = self.calculator.refresh(record, now)
            if weights == record.weights:
                continue
            try:
                await self.store.update(
                    record.id,
                    {"weights": dataclasses.asdict(weights), "updated_at": iso(now)},
                )
            except Exception as exc:
                logger.warning(
                    "Weight refresh failed",
                    extra={"record_id": record.id, "error": str(exc)},
                )
                continue
            updated += 1
        logger.info("Refreshed memory weights", extra={"updated": updated})
        return updated


async def forgetting_loop(engine: ForgettingEngine, interval_seconds: int) -> None:
    if interval_seconds <= 0:
        return
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await engine.refresh_weights()
            await engine.run()
        except Exception as exc:
            config.logger.warning(f"Forgetting task error: {exc}")
