"""Unit tests for structured logging."""

import json
import logging

import pytest

from grantsync.core.config import settings
from grantsync.core.logging import ReconcileJsonFormatter, log_event


def record_with(**extra):
    record = logging.LogRecord("grantsync.test", logging.INFO, __file__, 1, "granted", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestReconcileJsonFormatter:
    """Test JSON log record fields."""

    @pytest.fixture
    def formatter(self):
        return ReconcileJsonFormatter("%(level)s %(name)s %(message)s")

    def test_controller_identity(self, formatter):
        payload = json.loads(formatter.format(record_with()))

        assert payload["message"] == "granted"
        assert payload["level"] == "INFO"
        assert payload["controller"] == f"{settings.app_name}/{settings.app_version}"
        assert payload["cluster"] == settings.cluster_name
        assert "timestamp" in payload

    def test_context_fields(self, formatter):
        payload = json.loads(formatter.format(record_with(binding="p1/b1", namespace="n1")))

        assert payload["binding"] == "p1/b1"
        assert payload["namespace"] == "n1"
        assert "template" not in payload


@pytest.mark.unit
def test_log_event(caplog):
    logger = logging.getLogger("grantsync.test")

    with caplog.at_level(logging.INFO, logger="grantsync.test"):
        log_event(logger, "info", "binding_cleaned_up", binding="p1/b1", deleted=2)

    [record] = caplog.records
    assert record.event == "binding_cleaned_up"
    assert record.binding == "p1/b1"
    assert record.getMessage() == 'binding_cleaned_up: {"binding": "p1/b1", "deleted": 2}'
