"""
Record normalization and validation.
"""
from collector_nexus.services.processing.field_maps import FIELD_MAPS, get_field_map
from collector_nexus.services.processing.pipeline import (
    ProcessingPipeline,
    coerce_numbers,
    enrich,
    normalize_fields,
    trim_strings,
)
from collector_nexus.services.processing.records import DataRecord, RecordMetadata

__all__ = [
    "FIELD_MAPS",
    "DataRecord",
    "ProcessingPipeline",
    "RecordMetadata",
    "coerce_numbers",
    "enrich",
    "get_field_map",
    "normalize_fields",
    "trim_strings",
]
