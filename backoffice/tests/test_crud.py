import asyncio
import math
import unittest

from backoffice.crud import CrudEngine, parse_id
from backoffice.db import InMemoryResourceStore, StoreFailure
from backoffice.errors import NotFoundError, StoreError, UnexpectedError, ValidationError
from backoffice.resources import ResourceDescriptor, stamp_approved_at
from backoffice import schemas
from backoffice.schemas import ProductCreate, ProductUpdate, QuerySpec


class RecordingStore(InMemoryResourceStore):
    """In-memory store that records every call and the order of writes."""

    def __init__(self, name="products", records=()):
        super().__init__(name, records)
        self.calls = []
        self.committed = []

    async def count(self, filters):
        self.calls.append("count")
        return await super().count(filters)

    async def fetch(self, filters, *, offset, limit):
        self.calls.append("fetch")
        return await super().fetch(filters, offset=offset, limit=limit)

    async def get(self, record_id):
        self.calls.append("get")
        return await super().get(record_id)

    async def exists(self, record_id):
        self.calls.append("exists")
        # Yield so concurrent callers interleave between check and write.
        await asyncio.sleep(0)
        return await super().exists(record_id)

    async def update(self, record_id, values):
        self.calls.append("update")
        record = await super().update(record_id, values)
        self.committed.append(dict(values))
        return record

    async def delete(self, record_id):
        self.calls.append("delete")
        return await super().delete(record_id)


class FailingStore(InMemoryResourceStore):
    def __init__(self, error):
        super().__init__("products")
        self.error = error

    async def count(self, filters):
        raise self.error

    async def get(self, record_id):
        raise self.error

    async def insert(self, values):
        raise self.error


def product_engine(store):
    return CrudEngine(
        ResourceDescriptor(
            name="products",
            table="products",
            store=store,
            create_schema=ProductCreate,
            update_schema=ProductUpdate,
            topic="products:update",
        )
    )


def seeded_store(count, **extra):
    records = [
        {"name": f"Product {i}", "created_at": f"2024-01-{i:02d}T00:00:00+00:00", **extra}
        for i in range(1, count + 1)
    ]
    return RecordingStore(records=records)


class ParseIdTests(unittest.TestCase):
    def test_accepts_integers_and_numeric_strings(self):
        self.assertEqual(parse_id(7), 7)
        self.assertEqual(parse_id("42"), 42)
        self.assertEqual(parse_id(" 3 "), 3)

    def test_rejects_non_numeric(self):
        for raw in ("abc", "1.5", "", None, True):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError):
                    parse_id(raw)


class QuerySpecTests(unittest.TestCase):
    def test_clamps_out_of_range_values(self):
        self.assertEqual(QuerySpec(page=0).page, 1)
        self.assertEqual(QuerySpec(page=-4).page, 1)
        self.assertEqual(QuerySpec(limit=500).limit, 100)
        self.assertEqual(QuerySpec(limit=0).limit, 1)

    def test_unparseable_values_fall_back_to_defaults(self):
        spec = QuerySpec.from_params({"page": "x", "limit": "many"})
        self.assertEqual((spec.page, spec.limit), (1, 10))

    def test_non_reserved_params_become_filters(self):
        spec = QuerySpec.from_params(
            {"search": "pump", "page": "2", "category": "pumps", "inStock": "true"},
            aliases={"inStock": "in_stock"},
        )
        self.assertEqual(spec.search, "pump")
        self.assertEqual(spec.page, 2)
        self.assertEqual(spec.filters, {"category": "pumps", "in_stock": "true"})
        self.assertEqual(list(spec.filters), ["category", "in_stock"])


class CrudEngineListTests(unittest.IsolatedAsyncioTestCase):
    async def test_second_page_of_twenty_five(self):
        engine = product_engine(seeded_store(25))
        result = await engine.list(QuerySpec(page=2, limit=10))
        self.assertEqual(
            result.pagination.model_dump(),
            {"page": 2, "limit": 10, "total": 25, "pages": 3},
        )
        self.assertEqual(len(result.data), 10)
        # Newest first: page two starts at the 15th newest record.
        self.assertEqual(result.data[0]["name"], "Product 15")

    async def test_pages_is_ceiling_of_total_over_limit(self):
        for total, limit in ((0, 10), (1, 1), (9, 10), (10, 10), (11, 10), (7, 3), (250, 100)):
            with self.subTest(total=total, limit=limit):
                engine = product_engine(
                    RecordingStore(records=[{"name": str(i)} for i in range(total)])
                )
                result = await engine.list(QuerySpec(limit=limit))
                self.assertEqual(result.pagination.total, total)
                self.assertEqual(result.pagination.pages, math.ceil(total / limit))

    async def test_empty_resource(self):
        engine = product_engine(RecordingStore())
        result = await engine.list(QuerySpec())
        self.assertEqual(result.data, [])
        self.assertEqual(result.pagination.pages, 0)

    async def test_out_of_range_paging_is_clamped_not_rejected(self):
        engine = product_engine(seeded_store(120))
        result = await engine.list(QuerySpec(page=0, limit=500))
        self.assertEqual(result.pagination.page, 1)
        self.assertEqual(result.pagination.limit, 100)
        self.assertEqual(len(result.data), 100)

    async def test_total_counts_only_filtered_records(self):
        store = seeded_store(5, category="pumps")
        await store.insert({"name": "Valve", "category": "valves"})
        engine = product_engine(store)
        result = await engine.list(QuerySpec(filters={"category": "valves"}))
        self.assertEqual(result.pagination.total, 1)
        self.assertEqual(result.pagination.pages, 1)
        self.assertEqual([r["name"] for r in result.data], ["Valve"])

    async def test_count_is_issued_before_fetch(self):
        store = seeded_store(3)
        await product_engine(store).list(QuerySpec())
        self.assertEqual(store.calls, ["count", "fetch"])

    async def test_store_failure_aborts_list(self):
        engine = product_engine(FailingStore(StoreFailure("connection reset", code="08006")))
        with self.assertRaises(StoreError) as ctx:
            await engine.list(QuerySpec())
        self.assertEqual(ctx.exception.message, "Failed to fetch total count")
        self.assertEqual(ctx.exception.details, "connection reset")


class CrudEngineGetTests(unittest.IsolatedAsyncioTestCase):
    async def test_non_numeric_id_never_reaches_store(self):
        store = seeded_store(1)
        with self.assertRaises(ValidationError):
            await product_engine(store).get("abc")
        self.assertEqual(store.calls, [])

    async def test_out_of_range_id_is_not_found_without_store_call(self):
        store = seeded_store(1)
        engine = product_engine(store)
        for raw in ("99999999999999999999", "0", "-3"):
            with self.subTest(raw=raw):
                with self.assertRaises(NotFoundError):
                    await engine.get(raw)
                with self.assertRaises(NotFoundError):
                    await engine.update(raw, {"name": "x"})
                with self.assertRaises(NotFoundError):
                    await engine.delete(raw)
        self.assertEqual(store.calls, [])

    async def test_missing_record(self):
        with self.assertRaises(NotFoundError):
            await product_engine(RecordingStore()).get("99")

    async def test_unexpected_exception_is_wrapped(self):
        engine = product_engine(FailingStore(RuntimeError("boom")))
        with self.assertRaises(UnexpectedError) as ctx:
            await engine.get(1)
        self.assertEqual(ctx.exception.message, "Error fetching products")
        self.assertEqual(ctx.exception.status_code, 500)


class CrudEngineWriteTests(unittest.IsolatedAsyncioTestCase):
    async def test_create_then_get(self):
        engine = product_engine(RecordingStore())
        created = await engine.create({"name": "Widget"})
        fetched = await engine.get(created["id"])
        self.assertEqual(fetched["name"], "Widget")
        self.assertTrue(fetched["created_at"])

    async def test_create_validates_known_fields(self):
        engine = product_engine(RecordingStore())
        with self.assertRaises(ValidationError) as ctx:
            await engine.create({"price": -1})
        fields = {entry["field"] for entry in ctx.exception.details}
        self.assertIn("name", fields)
        self.assertIn("price", fields)

    async def test_create_rejects_store_managed_fields(self):
        engine = product_engine(RecordingStore())
        with self.assertRaises(ValidationError):
            await engine.create({"name": "Widget", "id": 5})

    async def test_create_passes_extra_fields_through(self):
        store = RecordingStore()
        created = await product_engine(store).create({"name": "Widget", "warranty": "2y"})
        self.assertEqual(created["warranty"], "2y")

    async def test_create_fills_column_defaults(self):
        created = await product_engine(RecordingStore()).create({"name": "Widget"})
        self.assertIs(created["is_active"], True)
        self.assertIs(created["in_stock"], True)
        self.assertEqual(created["stock_quantity"], 0)

    async def test_create_keeps_explicit_values_over_defaults(self):
        created = await product_engine(RecordingStore()).create(
            {"name": "Widget", "is_active": False}
        )
        self.assertIs(created["is_active"], False)

    async def test_create_with_narrower_schema_drops_unlisted_fields(self):
        store = InMemoryResourceStore("quotes")
        engine = CrudEngine(
            ResourceDescriptor(
                name="quotes",
                table="quotes",
                store=store,
                create_schema=schemas.QuoteCreate,
                update_schema=schemas.QuoteUpdate,
            )
        )
        created = await engine.create(
            {"project_name": "Line", "status": "approved", "notes": "internal"},
            schema=schemas.QuoteIntake,
        )
        self.assertEqual(created["status"], "pending")
        self.assertNotIn("notes", created)

    async def test_create_rejects_non_object_body(self):
        with self.assertRaises(ValidationError):
            await product_engine(RecordingStore()).create(["not", "an", "object"])

    async def test_store_failure_on_create(self):
        engine = product_engine(FailingStore(StoreFailure("duplicate key", code="23505")))
        with self.assertRaises(StoreError) as ctx:
            await engine.create({"name": "Widget"})
        self.assertEqual(ctx.exception.details, "duplicate key")

    async def test_update_and_delete_missing_are_always_not_found(self):
        store = RecordingStore()
        engine = product_engine(store)
        for _ in range(2):
            with self.assertRaises(NotFoundError):
                await engine.update("404", {"name": "Ghost"})
            with self.assertRaises(NotFoundError):
                await engine.delete("404")
        self.assertNotIn("update", store.calls)
        self.assertNotIn("delete", store.calls)

    async def test_update_rejects_bad_id_and_empty_payload(self):
        store = seeded_store(1)
        engine = product_engine(store)
        with self.assertRaises(ValidationError):
            await engine.update("one", {"name": "x"})
        with self.assertRaises(ValidationError):
            await engine.update("1", {})
        self.assertEqual(store.calls, [])

    async def test_update_returns_new_record(self):
        engine = product_engine(seeded_store(1))
        updated = await engine.update("1", {"name": "Renamed", "price": 12.5})
        self.assertEqual(updated["name"], "Renamed")
        self.assertEqual(updated["price"], 12.5)

    async def test_delete_returns_confirmation(self):
        engine = product_engine(seeded_store(1))
        result = await engine.delete(1)
        self.assertEqual(result, {"message": "products deleted successfully"})
        with self.assertRaises(NotFoundError):
            await engine.get(1)

    async def test_concurrent_updates_last_write_wins(self):
        store = seeded_store(1)
        engine = product_engine(store)
        first, second = await asyncio.gather(
            engine.update(1, {"name": "First"}),
            engine.update(1, {"name": "Second"}),
        )
        self.assertEqual({first["name"], second["name"]}, {"First", "Second"})
        final = await engine.get(1)
        self.assertEqual(final["name"], store.committed[-1]["name"])
        # Both passed the existence check before either wrote.
        self.assertEqual(store.calls[:2], ["exists", "exists"])

    async def test_update_hook_adds_derived_fields(self):
        store = InMemoryResourceStore(
            "testimonials", [{"name": "Ann", "content": "Great", "rating": 5}]
        )
        engine = CrudEngine(
            ResourceDescriptor(
                name="testimonials",
                table="testimonials",
                store=store,
                create_schema=schemas.TestimonialCreate,
                update_schema=schemas.TestimonialUpdate,
                prepare_update=stamp_approved_at,
            )
        )
        updated = await engine.update(1, {"status": "approved"})
        self.assertEqual(updated["status"], "approved")
        self.assertIn("approved_at", updated)


if __name__ == "__main__":
    unittest.main()
