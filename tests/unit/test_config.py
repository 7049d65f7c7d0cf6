"""
Unit tests for settings validation.
"""

import pytest
from pydantic import ValidationError

from jobsync.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults_are_consistent(self):
        """Test the default stale threshold outlasts the handler deadline."""
        settings = Settings(otel_enabled=False)

        assert settings.job_stale_after_seconds > settings.job_timeout_seconds

    @pytest.mark.parametrize("stale_after", [300, 120])
    def test_stale_threshold_must_exceed_timeout(self, stale_after: int):
        """Test a stale threshold at or below the handler deadline is rejected."""
        with pytest.raises(ValidationError, match="job_stale_after_seconds"):
            Settings(job_timeout_seconds=300.0, job_stale_after_seconds=stale_after)

    def test_retry_delay_has_a_ceiling(self):
        """Test the retry delay cap is finite by default."""
        assert Settings().retry_max_delay_seconds is not None
