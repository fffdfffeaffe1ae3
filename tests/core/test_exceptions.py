"""
Tests for the data source error hierarchy.
"""
from collector_nexus.core.exceptions import (
    AuthenticationError,
    ProviderError,
    RateLimitedError,
    TransformationError,
    TransientNetworkError,
    ValidationFailedError,
)


class TestDataSourceErrors:
    def test_message_carries_source(self):
        error = ProviderError("scryfall", "HTTP 500", status_code=500, retryable=True)

        assert str(error) == "[scryfall] HTTP 500"
        assert error.to_dict() == {
            "source": "scryfall",
            "category": "provider",
            "message": "HTTP 500",
            "status_code": 500,
            "retryable": True,
        }

    def test_retryable_defaults_by_category(self):
        assert RateLimitedError("ebay", "slow down").retryable is True
        assert TransientNetworkError("mtgjson", "timeout").retryable is True
        assert AuthenticationError("cardtrader", "bad token").retryable is False
        assert ProviderError("scryfall", "HTTP 400").retryable is False

    def test_rate_limited_keeps_retry_after(self):
        error = RateLimitedError("ebay", "slow down", retry_after=12.0, status_code=429)

        assert error.retry_after == 12.0
        assert error.category == "rate_limit"


class TestPipelineErrors:
    def test_transformation_error_names_stage(self):
        error = TransformationError("coerce-numbers", ValueError("bad number"))

        assert str(error) == "Error applying transformation 'coerce-numbers': bad number"
        assert isinstance(error.cause, ValueError)

    def test_validation_error_joins_violations(self):
        error = ValidationFailedError(["Missing required field: id", "Missing required field: name"])

        assert str(error) == "Validation failed: Missing required field: id; Missing required field: name"
        assert len(error.errors) == 2
