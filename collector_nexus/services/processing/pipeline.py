"""
Normalization and validation pipeline.

A record passes through four stages, in order:

1. transformations: pure functions over the payload; a failure fails the
   record and names the transformation
2. validation rules: every rule runs and all violations are collected
3. enrichment: fills ids and timestamps that are missing, never overwrites
4. field normalization: provider field names become canonical names using
   the table for the record's provider and type; unmapped fields, including
   the parents of mapped nested paths, are kept

Failed records come back with ``status="failed"`` so the caller can store
them for inspection and retry.
"""
import copy
import re
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from collector_nexus.core.exceptions import TransformationError, ValidationFailedError
from collector_nexus.services.processing.field_maps import (
    CANONICAL_FIELDS,
    PASSTHROUGH_FIELDS,
    aliases_for,
    get_field_map,
)
from collector_nexus.services.processing.records import DataRecord

logger = structlog.get_logger()

Transformation = Callable[[dict[str, Any]], dict[str, Any]]
ValidationRule = Callable[[dict[str, Any], DataRecord], list[str]]

_MISSING = object()

NUMERIC_FIELDS = frozenset({
    "price",
    "foil_price",
    "cmc",
    "card_count",
    "shipping_cost",
    "seller_rating",
    "manaValue",
    "convertedManaCost",
    "totalSetSize",
    "price_eur",
    "price_eur_foil",
})
NUMERIC_MAPS = frozenset({"prices"})
PRICE_FIELDS = ("price", "foil_price", "shipping_cost")
# Commas are accepted only as thousands separators: 1,234.50
GROUPED_NUMBER = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "card": ("id", "name", "source"),
    "set": ("code", "name", "source"),
    "price": ("card_id", "source"),
    "listing": ("id", "title", "price", "source"),
}


def resolve_path(data: Any, path: str) -> Any:
    """Value at a dotted path, or ``_MISSING``. Integer segments index lists."""
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _is_empty(value: Any) -> bool:
    return value is _MISSING or value is None or value == "" or value == [] or value == {}


def _assign(target: dict[str, Any], path: str, value: Any) -> None:
    """Set ``path`` in ``target`` unless a value is already there."""
    *parents, leaf = path.split(".")
    for segment in parents:
        target = target.setdefault(segment, {})
        if not isinstance(target, dict):
            return
    if _is_empty(target.get(leaf, _MISSING)):
        target[leaf] = value


# Transformations

def trim_strings(data: dict[str, Any]) -> dict[str, Any]:
    """Strip surrounding whitespace from every string, at any depth."""
    def trim(value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, dict):
            return {k: trim(v) for k, v in value.items()}
        if isinstance(value, list):
            return [trim(v) for v in value]
        return value

    return trim(data)


def _to_number(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if "," in text:
            if not GROUPED_NUMBER.match(text):
                raise ValueError(f"Ambiguous number format: {value!r}")
            text = text.replace(",", "")
        number = float(text)
        return int(number) if number.is_integer() and "." not in text else number
    if isinstance(value, dict) and "value" in value:
        return {**value, "value": _to_number(value["value"])}
    return value


def coerce_numbers(data: dict[str, Any]) -> dict[str, Any]:
    """
    Convert numeric strings in known numeric fields to numbers.

    Collector numbers and ids stay strings even when they look numeric.

    Raises:
        ValueError: A numeric field holds a non-numeric string, or uses
            commas other than as thousands separators ("1,5").
    """
    result = dict(data)
    for key, value in data.items():
        if key in NUMERIC_FIELDS:
            result[key] = _to_number(value)
        elif key in NUMERIC_MAPS and isinstance(value, dict):
            result[key] = {k: _to_number(v) for k, v in value.items()}
    return result


# Validation rules

def required_fields_rule(data: dict[str, Any], record: DataRecord) -> list[str]:
    """Every required field must be present under its canonical name or a provider alias."""
    errors = []
    for name in REQUIRED_FIELDS.get(record.type, ()):
        if name == "source" and record.source:
            continue
        paths = [name, *aliases_for(record.provider, record.type, name)]
        if all(_is_empty(resolve_path(data, path)) for path in paths):
            errors.append(f"Missing required field: {name}")
    return errors


def valid_price_rule(data: dict[str, Any], record: DataRecord) -> list[str]:
    """Prices present on the record must be non-negative numbers."""
    candidates: list[tuple[str, Any]] = []
    for name in PRICE_FIELDS:
        for path in (name, *aliases_for(record.provider, record.type, name)):
            value = resolve_path(data, path)
            if value is not _MISSING:
                candidates.append((path, value))
    prices = data.get("prices")
    if isinstance(prices, dict):
        candidates.extend((f"prices.{k}", v) for k, v in prices.items())

    errors = []
    for path, value in candidates:
        # Containers such as eBay's {"value", "currency"} are checked via their alias paths
        if value is None or isinstance(value, dict):
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"Invalid price for '{path}': {value!r}")
        elif value < 0:
            errors.append(f"Negative price for '{path}': {value}")
    return errors


# Enrichment and normalization

def enrich(data: dict[str, Any], record: DataRecord, now: datetime) -> dict[str, Any]:
    """Fill ``id``, ``created_at`` and ``updated_at`` when missing. Idempotent."""
    result = dict(data)
    if _is_empty(result.get("id", _MISSING)) and record.type != "price":
        result["id"] = record.id or str(uuid.uuid4())
    timestamp = now.isoformat()
    if _is_empty(result.get("created_at", _MISSING)):
        result["created_at"] = timestamp
    if _is_empty(result.get("updated_at", _MISSING)):
        result["updated_at"] = timestamp
    return result


def normalize_fields(data: dict[str, Any], provider: str, record_type: str) -> tuple[dict[str, Any], list[str]]:
    """
    Rename provider fields to canonical names.

    Returns:
        The normalized payload and the copied-through fields that are
        neither canonical nor on the pass-through allowlist.
    """
    result: dict[str, Any] = {}
    consumed: set[str] = set()
    for path, target in get_field_map(provider, record_type):
        value = resolve_path(data, path)
        if value is _MISSING:
            continue
        if "." not in path:
            consumed.add(path)
        if value is not None:
            _assign(result, target, value)

    unknown = []
    for key, value in data.items():
        if key in consumed:
            continue
        if key in result:
            if isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = {**value, **result[key]}
            continue
        result[key] = value
        if key not in CANONICAL_FIELDS and key not in PASSTHROUGH_FIELDS:
            unknown.append(key)
    return result, unknown


class ProcessingPipeline:
    """
    Runs records through transformations, validation, enrichment and
    field normalization.

    The default stages are ``trim-strings`` and ``coerce-numbers``
    (transformations) and ``required-fields`` and ``valid-price`` (rules).
    More can be added or removed by name.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None, defaults: bool = True):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._transformations: dict[str, Transformation] = {}
        self._rules: dict[str, ValidationRule] = {}
        if defaults:
            self.add_transformation("trim-strings", trim_strings)
            self.add_transformation("coerce-numbers", coerce_numbers)
            self.add_validation_rule("required-fields", required_fields_rule)
            self.add_validation_rule("valid-price", valid_price_rule)

    @property
    def transformation_names(self) -> list[str]:
        return list(self._transformations)

    @property
    def rule_names(self) -> list[str]:
        return list(self._rules)

    def add_transformation(self, name: str, transformation: Transformation) -> None:
        if name in self._transformations:
            raise ValueError(f"Transformation '{name}' already exists")
        self._transformations[name] = transformation

    def remove_transformation(self, name: str) -> bool:
        return self._transformations.pop(name, None) is not None

    def add_validation_rule(self, name: str, rule: ValidationRule) -> None:
        if name in self._rules:
            raise ValueError(f"Validation rule '{name}' already exists")
        self._rules[name] = rule

    def remove_validation_rule(self, name: str) -> bool:
        return self._rules.pop(name, None) is not None

    def _fail(self, record: DataRecord, data: dict[str, Any], error: Exception, errors: list[str], now: datetime) -> DataRecord:
        logger.warning(
            "Record processing failed",
            record=record.key,
            errors=errors,
        )
        failed = record.with_status(
            "failed",
            processed_at=now,
            error=str(error),
            errors=tuple(errors),
        )
        return DataRecord(
            id=failed.id,
            source=failed.source,
            provider=failed.provider,
            type=failed.type,
            data=data,
            metadata=failed.metadata,
        )

    def process(self, record: DataRecord) -> DataRecord:
        """
        Process one record.

        Returns:
            A new record with status ``processed`` or ``failed``.
        """
        now = self._clock()
        working = record.with_status("processing")
        data = copy.deepcopy(record.data)

        for name, transformation in self._transformations.items():
            try:
                data = transformation(data)
            except Exception as e:
                error = TransformationError(name, e)
                return self._fail(working, data, error, [str(error)], now)

        errors: list[str] = []
        for name, rule in self._rules.items():
            try:
                errors.extend(rule(data, working))
            except Exception as e:
                errors.append(f"Error applying validation rule '{name}': {e}")
        if errors:
            return self._fail(working, data, ValidationFailedError(errors), errors, now)

        data = enrich(data, working, now)
        data, unknown = normalize_fields(data, working.provider, working.type)
        if unknown:
            logger.info(
                "Unmapped provider fields copied through",
                record=working.key,
                provider=working.provider,
                fields=unknown,
            )

        processed = working.with_status(
            "processed",
            processed_at=working.metadata.processed_at or now,
            error=None,
            errors=(),
            unmapped_fields=tuple(unknown),
        )
        return DataRecord(
            id=str(data.get("id") or processed.id),
            source=processed.source,
            provider=processed.provider,
            type=processed.type,
            data=data,
            metadata=processed.metadata,
        )

    def process_many(self, records: list[DataRecord]) -> list[DataRecord]:
        return [self.process(record) for record in records]
