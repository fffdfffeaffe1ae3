"""
Tests for the normalization and validation pipeline.

Tests verify:
- Provider fields are renamed per provider and record type
- Unknown provider fields are copied through and reported
- Every validation violation is collected, not just the first
- Transformation failures name the failing transformation
- Processing a processed record again changes nothing
"""
from datetime import datetime, timezone

import pytest

from collector_nexus.services.processing.pipeline import (
    ProcessingPipeline,
    coerce_numbers,
    normalize_fields,
    resolve_path,
    trim_strings,
)
from collector_nexus.services.processing.records import DataRecord
from collector_nexus.services.sources.base import CanonicalCard

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pipeline():
    return ProcessingPipeline(clock=lambda: NOW)


def mtgjson_card(**overrides):
    card = {
        "uuid": "5f8287b1-5bb6-5f4c-ad17-316a40d5bb0c",
        "name": "  Lightning Bolt ",
        "setCode": "LEA",
        "number": "161",
        "manaValue": "1",
        "colorIdentity": ["R"],
        "rarity": "common",
        "foreignData": [{"language": "German", "name": "Blitzschlag"}],
    }
    card.update(overrides)
    return DataRecord.from_item(card, "mtgjson", "mtgjson", "card")


class TestNormalization:
    def test_mtgjson_card_is_normalized(self, pipeline):
        processed = pipeline.process(mtgjson_card())

        assert processed.status == "processed"
        assert processed.id == "5f8287b1-5bb6-5f4c-ad17-316a40d5bb0c"
        data = processed.data
        assert data["id"] == "5f8287b1-5bb6-5f4c-ad17-316a40d5bb0c"
        assert data["name"] == "Lightning Bolt"
        assert data["set_code"] == "LEA"
        assert data["collector_number"] == "161"
        assert data["cmc"] == 1
        assert data["color_identity"] == ["R"]
        assert "uuid" not in data
        assert "setCode" not in data
        assert data["created_at"] == NOW.isoformat()
        assert data["updated_at"] == NOW.isoformat()

    def test_unknown_fields_are_kept_and_reported(self, pipeline):
        processed = pipeline.process(mtgjson_card())

        assert processed.data["foreignData"] == [{"language": "German", "name": "Blitzschlag"}]
        assert processed.metadata.unmapped_fields == ("foreignData",)

    def test_processing_is_idempotent(self, pipeline):
        once = pipeline.process(mtgjson_card())
        twice = pipeline.process(once)

        assert twice.data == once.data
        assert twice.status == "processed"
        assert twice.metadata.processed_at == once.metadata.processed_at

    def test_collector_number_stays_a_string(self, pipeline):
        processed = pipeline.process(mtgjson_card(number="0042"))

        assert processed.data["collector_number"] == "0042"

    def test_canonical_card_passes_through(self, pipeline):
        card = CanonicalCard(id="abc", source="scryfall", name="Opt", set_code="XLN", prices={"usd": 0.1})
        record = DataRecord.from_item(card, "scryfall", "scryfall")

        processed = pipeline.process(record)

        assert processed.status == "processed"
        assert processed.data["set_code"] == "XLN"
        assert processed.data["prices"] == {"usd": 0.1}
        assert processed.metadata.unmapped_fields == ()

    def test_scryfall_raw_fields_and_nested_images(self, pipeline):
        raw = {
            "id": "abc",
            "name": "Delver of Secrets",
            "set": "isd",
            "card_faces": [{"image_uris": {"normal": "front.jpg"}}, {"image_uris": {"normal": "back.jpg"}}],
            "prices": {"usd": "0.40", "usd_foil": None},
        }
        record = DataRecord.from_item(raw, "scryfall", "scryfall", "card")

        processed = pipeline.process(record)

        assert processed.data["set_code"] == "isd"
        assert processed.data["images"] == {"normal": "front.jpg"}
        assert processed.data["prices"] == {"usd": 0.4, "usd_foil": None}

    def test_ebay_listing_field_paths(self, pipeline):
        raw = {
            "itemId": "v1|123|0",
            "title": "Black Lotus",
            "price": {"value": "15000.00", "currency": "USD"},
            "seller": {"username": "vintage_shop", "feedbackPercentage": "99.8"},
            "itemWebUrl": "https://ebay.test/itm/123",
        }
        record = DataRecord.from_item(raw, "ebay", "ebay", "listing")

        processed = pipeline.process(record)

        assert processed.status == "processed"
        data = processed.data
        assert data["id"] == "v1|123|0"
        assert data["price"] == 15000.0
        assert data["currency"] == "USD"
        assert data["seller_name"] == "vintage_shop"
        assert data["url"] == "https://ebay.test/itm/123"
        assert "seller" in processed.metadata.unmapped_fields


class TestValidation:
    def test_all_violations_are_collected(self, pipeline):
        raw = {"itemId": "", "price": {"value": "-5.00", "currency": "USD"}}
        record = DataRecord.from_item(raw, "ebay", "ebay", "listing")

        failed = pipeline.process(record)

        assert failed.status == "failed"
        assert failed.metadata.errors == (
            "Missing required field: id",
            "Missing required field: title",
            "Negative price for 'price.value': -5.0",
        )
        assert failed.metadata.error.startswith("Validation failed: ")

    def test_invalid_price_type(self, pipeline):
        card = CanonicalCard(id="abc", source="scryfall", name="Opt")
        record = DataRecord.from_item(card, "scryfall", "scryfall")
        record = DataRecord(
            id=record.id,
            source=record.source,
            provider=record.provider,
            type=record.type,
            data={**record.data, "prices": {"usd": True}},
        )

        failed = pipeline.process(record)

        assert failed.status == "failed"
        assert failed.metadata.errors == ("Invalid price for 'prices.usd': True",)

    def test_failing_rule_is_reported_not_raised(self, pipeline):
        def broken(data, record):
            raise KeyError("oops")

        pipeline.add_validation_rule("broken", broken)

        failed = pipeline.process(mtgjson_card())

        assert failed.status == "failed"
        assert failed.metadata.errors == ("Error applying validation rule 'broken': 'oops'",)


class TestTransformations:
    def test_failing_transformation_is_named(self, pipeline):
        failed = pipeline.process(mtgjson_card(manaValue="one"))

        assert failed.status == "failed"
        assert failed.metadata.error.startswith("Error applying transformation 'coerce-numbers':")
        assert failed.metadata.processed_at == NOW

    def test_decimal_comma_price_fails_the_record(self, pipeline):
        failed = pipeline.process(mtgjson_card(price="1,5"))

        assert failed.status == "failed"
        assert "Ambiguous number format" in failed.metadata.error
        assert failed.data["price"] == "1,5"

    def test_custom_transformation_runs_in_order(self, pipeline):
        pipeline.add_transformation("upper-name", lambda data: {**data, "name": data["name"].upper()})

        processed = pipeline.process(mtgjson_card())

        assert processed.data["name"] == "LIGHTNING BOLT"
        assert pipeline.transformation_names == ["trim-strings", "coerce-numbers", "upper-name"]

    def test_duplicate_names_are_rejected(self, pipeline):
        with pytest.raises(ValueError):
            pipeline.add_transformation("trim-strings", trim_strings)
        with pytest.raises(ValueError):
            pipeline.add_validation_rule("required-fields", lambda data, record: [])

    def test_remove_stages(self, pipeline):
        assert pipeline.remove_validation_rule("valid-price") is True
        assert pipeline.remove_validation_rule("valid-price") is False
        assert pipeline.remove_transformation("coerce-numbers") is True
        assert pipeline.rule_names == ["required-fields"]

    def test_input_record_is_not_mutated(self, pipeline):
        record = mtgjson_card()

        pipeline.process(record)

        assert record.data["name"] == "  Lightning Bolt "
        assert record.status == "pending"


class TestStageFunctions:
    def test_trim_strings_nested(self):
        assert trim_strings({"a": " x ", "b": [" y "], "c": {"d": " z "}, "n": 1}) == {
            "a": "x", "b": ["y"], "c": {"d": "z"}, "n": 1,
        }

    def test_coerce_numbers_only_known_fields(self):
        result = coerce_numbers({"price": "1,234.50", "cmc": "3", "collector_number": "12", "id": "7"})

        assert result == {"price": 1234.5, "cmc": 3, "collector_number": "12", "id": "7"}

    def test_coerce_numbers_rejects_decimal_comma(self):
        with pytest.raises(ValueError, match="Ambiguous number format"):
            coerce_numbers({"price": "1,5"})
        with pytest.raises(ValueError):
            coerce_numbers({"prices": {"eur": "12,50"}})

    def test_coerce_numbers_thousands_separators(self):
        assert coerce_numbers({"price": "12,345,678"}) == {"price": 12345678}
        assert coerce_numbers({"price": {"value": "2,500.00", "currency": "USD"}}) == {
            "price": {"value": 2500.0, "currency": "USD"},
        }

    def test_resolve_path(self):
        data = {"a": [{"b": 1}]}

        assert resolve_path(data, "a.0.b") == 1
        assert resolve_path(data, "a.1.b") is not None
        assert resolve_path(data, "a.1.b") is resolve_path(data, "missing")

    def test_unknown_provider_maps_nothing(self):
        data, unknown = normalize_fields({"name": "Opt", "weird": 1}, "unknown", "card")

        assert data == {"name": "Opt", "weird": 1}
        assert unknown == ["weird"]


class TestRecords:
    def test_retry_starts_a_fresh_attempt(self, pipeline):
        failed = pipeline.process(mtgjson_card(manaValue="one"))

        retried = failed.retry()

        assert retried.status == "pending"
        assert retried.metadata.retry_count == 1
        assert retried.metadata.error is None

    def test_stored_failure_round_trips_into_next_attempt(self, pipeline):
        failed = pipeline.process(mtgjson_card(manaValue="one"))
        stored = {
            "key": failed.key,
            "id": failed.id,
            "source": failed.source,
            "provider": failed.provider,
            "type": failed.type,
            "status": failed.status,
            "data": failed.data,
            "metadata": {**failed.metadata.to_dict(), "retry_count": 2},
        }

        restored = DataRecord.from_stored(stored)
        retried = restored.retry(data={"uuid": failed.id, "name": "Lightning Bolt"})

        assert restored.status == "failed"
        assert restored.metadata.processed_at == NOW
        assert restored.metadata.errors == failed.metadata.errors
        assert retried.metadata.retry_count == 3
        assert retried.status == "pending"
        assert retried.data == {"uuid": failed.id, "name": "Lightning Bolt"}

    def test_key_is_unique_per_source_and_type(self):
        record = mtgjson_card()

        assert record.key == "mtgjson:card:5f8287b1-5bb6-5f4c-ad17-316a40d5bb0c"
