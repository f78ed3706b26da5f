"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from src.config import (
    LedgerSettings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)
from src.models.ledger import RevertPolicy


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    for name in (
        "STORAGE_BACKEND",
        "LEDGER_REVERT_POLICY",
        "LEDGER_SWEEP_PAGE_SIZE",
        "GOOGLE_SHEETS_CREDENTIALS_PATH",
        "GOOGLE_SHEETS_SPREADSHEET_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestLedgerSettings:
    """Environment-driven ledger behavior."""

    def test_defaults(self):
        settings = LedgerSettings()
        assert settings.revert_policy == RevertPolicy.APPLIED_ONLY
        assert settings.sweep_page_size == 500
        assert settings.max_recurrence_catchup == 36
        assert settings.default_installment_description == "Installment purchase"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_REVERT_POLICY", "always")
        monkeypatch.setenv("LEDGER_SWEEP_PAGE_SIZE", "50")

        settings = get_settings().ledger

        assert settings.revert_policy == RevertPolicy.ALWAYS
        assert settings.sweep_page_size == 50

    def test_page_size_bounds(self):
        with pytest.raises(ValidationError):
            LedgerSettings(sweep_page_size=0)


class TestStorageSettings:
    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            StorageSettings(backend="postgres")

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()


class TestValidateAllSettings:
    """Startup configuration check."""

    def test_memory_backend_skips_sheets(self):
        results = validate_all_settings()
        assert results["storage"] is True
        assert results["ledger"] is True
        assert "google_sheets" not in results

    def test_sheets_backend_requires_credentials(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "google_sheets")

        results = validate_all_settings()

        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
