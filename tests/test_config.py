"""Tests for configuration loading."""

from messledger.config import get_settings, validate_all_settings


class TestSettings:

    def test_defaults(self):
        settings = get_settings()
        assert settings.store.backend == "memory"
        assert settings.app.unknown_participant_name == "Unknown User"
        assert settings.app.settings_document_id == "mess-settings"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MESS_STORE_BACKEND", "google_sheets")
        monkeypatch.setenv("UNKNOWN_PARTICIPANT_NAME", "Former member")
        settings = get_settings()
        assert settings.store.backend == "google_sheets"
        assert settings.app.unknown_participant_name == "Former member"

    def test_sheet_names(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_SHEETS_CREDENTIALS_PATH", "creds.json")
        monkeypatch.setenv("GOOGLE_SHEETS_SPREADSHEET_ID", "abc")
        monkeypatch.setenv("GOOGLE_SHEETS_MEALS_SHEET_NAME", "Khabar")
        sheets = get_settings().google_sheets
        assert sheets.sheet_name_for("meals") == "Khabar"
        assert sheets.sheet_name_for("audit_log") == "AuditLog"


class TestValidateAllSettings:

    def test_memory_backend_skips_google_sheets(self):
        results = validate_all_settings()
        assert results["store"] is True
        assert results["app"] is True
        assert "google_sheets" not in results

    def test_google_sheets_backend_requires_spreadsheet(self, monkeypatch):
        monkeypatch.setenv("MESS_STORE_BACKEND", "google_sheets")
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        results = validate_all_settings()
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
