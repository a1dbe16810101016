"""Tests for CacheStore against the test database."""
from datetime import timedelta
from unittest import mock

from django.db import IntegrityError, OperationalError, transaction
from django.test import TestCase

from countries import exceptions, utils
from countries.models import Country
from countries.store import CacheStore, SortSpec, parse_sort


def make_country(name, population=1000, currency_code="WON", exchange_rate=2.5, estimated_gdp=None, **extra):
    return Country(
        name=name,
        population=population,
        currency_code=currency_code,
        exchange_rate=exchange_rate,
        estimated_gdp=estimated_gdp,
        **extra,
    )


class UpsertTests(TestCase):

    def setUp(self):
        self.store = CacheStore()

    async def test_upsert_twice_is_idempotent(self):
        first_at = utils.get_now()
        second_at = first_at + timedelta(minutes=5)
        record = make_country("France", estimated_gdp=123.0, region="Europe")

        await self.store.upsert(record, refreshed_at=first_at)
        await self.store.upsert(record, refreshed_at=second_at)

        self.assertEqual(await self.store.count(), 1)
        stored = await self.store.get("France")
        self.assertEqual(stored.region, "Europe")
        self.assertEqual(stored.population, 1000)
        self.assertEqual(stored.estimated_gdp, 123.0)
        self.assertEqual(stored.last_refreshed_at, second_at)

    async def test_upsert_overwrites_every_mutable_field(self):
        await self.store.upsert(make_country("France", capital="Paris", estimated_gdp=5.0))
        await self.store.upsert(make_country("FRANCE", population=0, currency_code=None, exchange_rate=None))

        stored = await self.store.get("france")
        self.assertEqual(stored.name, "France")
        self.assertIsNone(stored.capital)
        self.assertEqual(stored.population, 0)
        self.assertIsNone(stored.currency_code)
        self.assertIsNone(stored.estimated_gdp)
        self.assertEqual(await self.store.count(), 1)

    async def test_last_refreshed_at_never_moves_back(self):
        later = utils.get_now()
        earlier = later - timedelta(hours=1)
        await self.store.upsert(make_country("Peru"), refreshed_at=later)
        await self.store.upsert(make_country("Peru", population=7), refreshed_at=earlier)

        stored = await self.store.get("Peru")
        self.assertEqual(stored.population, 7)
        self.assertEqual(stored.last_refreshed_at, later)

    async def test_invalid_record_raises_validation_error_with_fields(self):
        with self.assertRaises(exceptions.ValidationError) as ctx:
            await self.store.upsert(make_country("Peru", flag_url="not a url"))
        self.assertIn("flag_url", ctx.exception.details)
        self.assertEqual(await self.store.count(), 0)

    async def test_batch_skips_bad_records_and_keeps_the_rest(self):
        outcomes = await self.store.upsert_many([
            make_country("Chile"),
            make_country("Broken", flag_url="nope"),
            make_country("Peru"),
        ])

        self.assertEqual([o.ok for o in outcomes], [True, False, True])
        self.assertIn("flag_url", outcomes[1].reason)
        self.assertEqual(await self.store.count(), 2)

    async def test_batch_rolls_back_on_database_failure(self):
        original = CacheStore._write

        def flaky(store, record, refreshed_at):
            if record.name == "Peru":
                raise OperationalError("database is locked")
            return original(store, record, refreshed_at)

        with mock.patch.object(CacheStore, "_write", flaky):
            with self.assertRaises(exceptions.StorageError):
                await self.store.upsert_many([make_country("Chile"), make_country("Peru")])

        self.assertEqual(await self.store.count(), 0)


class LookupTests(TestCase):

    def setUp(self):
        self.store = CacheStore()

    async def test_lookup_is_case_insensitive(self):
        await self.store.upsert(make_country("France"))
        upper = await self.store.get("FRANCE")
        lower = await self.store.get("france")
        self.assertEqual(upper.pk, lower.pk)

    async def test_delete_makes_every_spelling_not_found(self):
        await self.store.upsert(make_country("France"))
        await self.store.delete("france")

        for name in ("France", "france"):
            with self.assertRaises(exceptions.NotFoundError):
                await self.store.get(name)

    async def test_delete_missing_key_is_not_found(self):
        with self.assertRaises(exceptions.NotFoundError) as ctx:
            await self.store.delete("Atlantis")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_status_aggregates(self):
        self.assertEqual(await self.store.count(), 0)
        self.assertIsNone(await self.store.most_recent_refresh())

        newest = utils.get_now()
        await self.store.upsert(make_country("Chile"), refreshed_at=newest - timedelta(days=1))
        await self.store.upsert(make_country("Peru"), refreshed_at=newest)

        self.assertEqual(await self.store.count(), 2)
        self.assertEqual(await self.store.most_recent_refresh(), newest)

    def test_database_rejects_names_differing_only_in_case(self):
        Country.objects.create(name="France")
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Country.objects.create(name="FRANCE")


class ListTests(TestCase):

    def setUp(self):
        self.store = CacheStore()

    async def seed(self):
        await self.store.upsert_many([
            make_country("Noland", population=500, currency_code=None, exchange_rate=None, region="Fiction"),
            make_country("Rich", population=10, estimated_gdp=900.0, region="Europe", currency_code="EUR"),
            make_country("Middle", population=3000, estimated_gdp=400.0, region="Europe", currency_code="EUR"),
            make_country("Wonderland", population=20, estimated_gdp=600.0, region="Fiction"),
        ])

    async def test_gdp_desc_puts_missing_estimates_last(self):
        await self.seed()
        rows = await self.store.list(sort=parse_sort("gdp_desc"))
        self.assertEqual([c.name for c in rows], ["Rich", "Wonderland", "Middle", "Noland"])

    async def test_gdp_asc_still_puts_missing_estimates_last(self):
        await self.seed()
        rows = await self.store.list(sort=parse_sort("gdp_asc"))
        self.assertEqual([c.name for c in rows], ["Middle", "Wonderland", "Rich", "Noland"])

    async def test_population_sort(self):
        await self.seed()
        rows = await self.store.list(sort=SortSpec("population", descending=True))
        self.assertEqual([c.population for c in rows], [3000, 500, 20, 10])

    async def test_filters_are_case_insensitive(self):
        await self.seed()
        rows = await self.store.list(region="europe", currency_code="eur")
        self.assertEqual({c.name for c in rows}, {"Rich", "Middle"})
        self.assertEqual(await self.store.list(region="Antarctica"), [])

    async def test_default_order_is_insertion_order(self):
        await self.seed()
        rows = await self.store.list()
        self.assertEqual([c.name for c in rows], ["Noland", "Rich", "Middle", "Wonderland"])


class ParseSortTests(TestCase):

    def test_aliases(self):
        self.assertEqual(parse_sort("gdp_desc"), SortSpec("estimated_gdp", True))
        self.assertEqual(parse_sort("estimated_gdp_asc"), SortSpec("estimated_gdp", False))
        self.assertEqual(parse_sort("population_desc"), SortSpec("population", True))

    def test_rejects_unknown_field_and_format(self):
        with self.assertRaises(exceptions.ValidationError) as ctx:
            parse_sort("capital_desc")
        self.assertEqual(ctx.exception.details, {"capital": "is not a valid sort field"})
        with self.assertRaises(exceptions.ValidationError) as ctx:
            parse_sort("gdp")
        self.assertIn("sort", ctx.exception.details)
