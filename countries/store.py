"""
Persistent keyed store of ``Country`` rows.

Keys are country names compared case-insensitively. Every method is a
coroutine; multi-statement writes run in a worker thread under
``transaction.atomic`` so each key is written all-or-nothing.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError, connections, transaction
from django.db.models import F, Max

from . import exceptions, utils
from .models import MUTABLE_FIELDS, Country


logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "gdp": "estimated_gdp",
    "estimated_gdp": "estimated_gdp",
    "population": "population",
}


@dataclass(frozen=True)
class SortSpec:
    field: str
    descending: bool = False


@dataclass
class UpsertOutcome:
    name: str
    country: Optional[Country] = None
    reason: Optional[str] = None

    @property
    def ok(self):
        return self.country is not None


def parse_sort(value):
    """``gdp_desc`` / ``population_asc`` / ... -> SortSpec."""
    field_name, _, direction = (value or "").rpartition("_")
    if direction not in ("asc", "desc") or not field_name:
        raise exceptions.ValidationError(
            {"sort": "invalid format (use <field>_asc or <field>_desc)"}
        )
    if field_name not in SORT_FIELDS:
        raise exceptions.ValidationError({field_name: "is not a valid sort field"})
    return SortSpec(SORT_FIELDS[field_name], descending=direction == "desc")


def _field_errors(exc):
    return {
        field: messages[0] if messages else "is invalid"
        for field, messages in exc.message_dict.items()
    }


class CacheStore:

    def _write(self, record, refreshed_at):
        record.full_clean(validate_unique=False, validate_constraints=False)

        existing = (
            Country.objects.select_for_update()
            .filter(name__iexact=record.name)
            .first()
        )
        if existing is None:
            stored = Country(
                name=record.name,
                last_refreshed_at=refreshed_at,
                **{f: getattr(record, f) for f in MUTABLE_FIELDS},
            )
            stored.save(force_insert=True)
            return stored

        for f in MUTABLE_FIELDS:
            setattr(existing, f, getattr(record, f))
        if existing.last_refreshed_at is None or existing.last_refreshed_at < refreshed_at:
            existing.last_refreshed_at = refreshed_at
        existing.save(update_fields=[*MUTABLE_FIELDS, "last_refreshed_at"])
        return existing

    def _upsert_one(self, record, refreshed_at):
        with transaction.atomic():
            return self._write(record, refreshed_at)

    def _upsert_batch(self, records, refreshed_at):
        outcomes = []
        with transaction.atomic():
            for record in records:
                try:
                    # Savepoint per record: a bad row rolls back alone.
                    with transaction.atomic():
                        stored = self._write(record, refreshed_at)
                except DjangoValidationError as exc:
                    reason = "; ".join(f"{k}: {v}" for k, v in _field_errors(exc).items())
                except IntegrityError as exc:
                    reason = str(exc)
                else:
                    outcomes.append(UpsertOutcome(record.name, country=stored))
                    continue
                logger.warning("Skipping %s: %s", record.name, reason)
                outcomes.append(UpsertOutcome(record.name, reason=reason))
        return outcomes

    async def upsert(self, record, refreshed_at=None):
        refreshed_at = refreshed_at or utils.get_now()
        try:
            return await sync_to_async(self._upsert_one)(record, refreshed_at)
        except DjangoValidationError as exc:
            raise exceptions.ValidationError(_field_errors(exc)) from exc
        except DatabaseError as exc:
            logger.error("Upsert of %s failed: %s", record.name, exc)
            raise exceptions.StorageError(str(exc)) from exc

    async def upsert_many(self, records, refreshed_at=None) -> List[UpsertOutcome]:
        """
        Upsert a cycle's records as one unit of work.

        Records failing validation or a constraint are reported as skipped
        outcomes; any other database failure rolls the whole batch back and
        raises StorageError.
        """
        refreshed_at = refreshed_at or utils.get_now()
        try:
            return await sync_to_async(self._upsert_batch)(list(records), refreshed_at)
        except DatabaseError as exc:
            logger.error("Batch upsert rolled back: %s", exc)
            raise exceptions.StorageError(str(exc)) from exc

    async def get(self, name):
        try:
            country = await Country.objects.filter(name__iexact=name).afirst()
        except DatabaseError as exc:
            raise exceptions.StorageError(str(exc)) from exc
        if country is None:
            raise exceptions.NotFoundError(name)
        return country

    async def delete(self, name):
        try:
            deleted, _ = await Country.objects.filter(name__iexact=name).adelete()
        except DatabaseError as exc:
            raise exceptions.StorageError(str(exc)) from exc
        if not deleted:
            raise exceptions.NotFoundError(name)
        logger.info("Deleted %s", name)

    async def list(self, region=None, currency_code=None, sort=None):
        qs = Country.objects.all()
        if region:
            qs = qs.filter(region__iexact=region)
        if currency_code:
            qs = qs.filter(currency_code__iexact=currency_code)
        if sort is not None:
            column = F(sort.field)
            # Missing estimates go last whichever way the list is sorted.
            ordering = column.desc(nulls_last=True) if sort.descending else column.asc(nulls_last=True)
            qs = qs.order_by(ordering, "id")
        else:
            qs = qs.order_by("id")
        try:
            return [country async for country in qs]
        except DatabaseError as exc:
            raise exceptions.StorageError(str(exc)) from exc

    async def count(self):
        try:
            return await Country.objects.acount()
        except DatabaseError as exc:
            raise exceptions.StorageError(str(exc)) from exc

    async def most_recent_refresh(self):
        try:
            result = await Country.objects.aaggregate(latest=Max("last_refreshed_at"))
        except DatabaseError as exc:
            raise exceptions.StorageError(str(exc)) from exc
        return result["latest"]

    def close(self):
        connections.close_all()
