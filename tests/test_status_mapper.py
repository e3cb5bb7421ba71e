"""Tests for provider status normalization."""

import pytest

from voucher_shop.reconciliation.status_mapper import (
    COMPLETED,
    FAILED,
    PENDING,
    is_terminal,
    map_status,
)


class TestMtnStatuses:

    @pytest.mark.parametrize("raw", ["successful", "completed", "success"])
    def test_success_values_map_to_completed(self, raw):
        assert map_status(raw, "mtn") == COMPLETED

    @pytest.mark.parametrize("raw", ["failed", "rejected", "failure", "expired"])
    def test_failure_values_map_to_failed(self, raw):
        assert map_status(raw, "mtn") == FAILED

    @pytest.mark.parametrize("raw", ["pending", "timeout", "pending_confirmation"])
    def test_pending_values_map_to_pending(self, raw):
        assert map_status(raw, "mtn") == PENDING

    def test_unknown_status_passes_through(self):
        assert map_status("weird", "mtn") == "weird"

    def test_provider_name_is_case_insensitive(self):
        assert map_status("successful", "MTN") == COMPLETED


class TestAirtelStatuses:

    def test_status_codes(self):
        assert map_status("TS", "airtel") == COMPLETED
        assert map_status("TF", "airtel") == FAILED
        assert map_status("TP", "airtel") == PENDING

    def test_unknown_code_passes_through(self):
        assert map_status("TX", "airtel") == "TX"

    def test_gateway_vocabulary_passes_through(self):
        """The gateway reports Airtel payments with its own words."""
        assert map_status("completed", "airtel") == "completed"


class TestUnknownInputs:

    def test_unknown_provider_passes_through(self):
        assert map_status("successful", "mpesa") == "successful"

    def test_missing_values_never_raise(self):
        assert map_status(None, "mtn") is None
        assert map_status("completed", None) == "completed"
        assert map_status(None, None) is None


def test_is_terminal():
    assert is_terminal(COMPLETED)
    assert is_terminal(FAILED)
    assert not is_terminal(PENDING)
    assert not is_terminal("weird")
    assert not is_terminal(None)
