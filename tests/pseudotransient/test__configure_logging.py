"""Tests for the package-level logging helper."""

import logging

import pseudotransient


class TestConfigureLogging:
    def test_passes_level_to_basic_config(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            logging, "basicConfig", lambda **kwargs: calls.append(kwargs)
        )

        pseudotransient.configure_logging(logging.DEBUG)

        assert calls[0]["level"] == logging.DEBUG
        assert "%(name)s" in calls[0]["format"]

    def test_version(self):
        assert pseudotransient.__version__ == "0.1.0"
