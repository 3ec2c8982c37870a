"""
Configuration Loading Tests
"""

from datetime import date
from pathlib import Path

import pytest

from core.config import load_config


BASE_ENV = {
    "SAP_SERVICE_LAYER_URL": "https://sap.example.com:50000/",
    "SAP_COMPANY_DB": "SBO_PROD",
    "SAP_USERNAME": "manager",
    "SAP_PASSWORD": "secret",
}


def env(**overrides):
    values = dict(BASE_ENV)
    values.update(overrides)
    return values


class TestDefaults:

    def test_defaults(self):
        config = load_config(env())
        assert config.erp.base_url == "https://sap.example.com:50000"
        assert config.erp.is_configured
        assert config.erp.verify_ssl is False
        assert config.session.reconnect_max_attempts == 5
        assert config.session.heartbeat_interval_seconds == 300
        assert config.session.alert_threshold_hours == 72
        assert config.session.staleness_threshold_hours == 168
        assert config.delivery.max_documents_per_cycle == 50
        assert config.delivery.test_mode is False
        assert config.delivery.from_date == date.today()
        assert config.schedule.cycle_minute == 50
        assert config.schedule.report_hour == 18
        assert config.schedule.retention_days == 30
        assert config.alerts.enabled is False
        assert config.log_level == "INFO"

    def test_unconfigured_erp(self):
        assert not load_config({}).erp.is_configured

    def test_empty_environment_still_has_date_floor(self):
        # Unset start date falls back to the day the service starts
        assert load_config({}).delivery.from_date == date.today()


class TestParsing:

    def test_values(self):
        config = load_config(env(
            INVOICE_PDF_PATH="/srv/pdfs",
            PROCESS_INVOICES_FROM_DATE="2024-03-01",
            TEST_MODE="true",
            TEST_PHONE="1133330000",
            SESSION_ALERT_ENABLED="yes",
            SESSION_ALERT_EMAIL="ops@example.com, it@example.com",
            CYCLE_MINUTE="15",
            LOG_LEVEL="debug",
            LOG_FORMAT="json",
        ))
        assert config.delivery.artifact_dir == Path("/srv/pdfs")
        assert config.delivery.from_date == date(2024, 3, 1)
        assert config.delivery.test_mode is True
        assert config.alerts.recipients == ["ops@example.com", "it@example.com"]
        assert config.alerts.report_recipients == ["ops@example.com", "it@example.com"]
        assert config.schedule.cycle_minute == 15
        assert config.log_level == "DEBUG"
        assert config.log_json is True

    def test_separate_report_recipients(self):
        config = load_config(env(SESSION_ALERT_EMAIL="ops@example.com", REPORT_EMAIL="sales@example.com"))
        assert config.alerts.report_recipients == ["sales@example.com"]

    def test_salespeople(self):
        config = load_config(env(
            SALES_PERSON_7="11 4444 7777",
            SALES_PERSON_NAME_7="Laura",
            SALES_PERSON_12="11 4444 1212",
        ))
        people = config.delivery.salespeople
        assert people[7].name == "Laura"
        assert people[7].phone == "11 4444 7777"
        assert people[12].name == "Código 12"

    def test_blank_values_use_defaults(self):
        config = load_config(env(CYCLE_MINUTE="  ", TEST_MODE=""))
        assert config.schedule.cycle_minute == 50
        assert config.delivery.test_mode is False


class TestValidation:

    @pytest.mark.parametrize("overrides", [
        {"TEST_MODE": "true"},
        {"SESSION_ALERT_ENABLED": "true"},
        {"CYCLE_MINUTE": "60"},
        {"REPORT_HOUR": "24"},
        {"CYCLE_MINUTE": "half past"},
        {"TEST_MODE": "maybe"},
        {"PROCESS_INVOICES_FROM_DATE": "01/03/2024"},
        {"SESSION_RECONNECT_MAX_ATTEMPTS": "0"},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ValueError):
            load_config(env(**overrides))
