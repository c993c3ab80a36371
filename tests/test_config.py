"""Tests for run configuration."""

import dataclasses

import pytest

from pgcsvload.config import LoadConfig, session_settings


class TestLoadConfig:
    def test_defaults(self):
        cfg = LoadConfig(table="events", source="data.csv")
        assert cfg.workers == 5
        assert cfg.batch_size == 100
        assert cfg.method == "copy"
        assert cfg.on_error == "continue"
        assert cfg.record_queue_size == 10

    def test_explicit_queue_size(self):
        cfg = LoadConfig(table="events", source="data.csv", workers=3, queue_size=7)
        assert cfg.record_queue_size == 7

    def test_frozen(self):
        cfg = LoadConfig(table="events", source="data.csv")
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.workers = 9

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"table": ""}, "table"),
            ({"source": ""}, "source"),
            ({"workers": 0}, "workers"),
            ({"batch_size": 0}, "batch size"),
            ({"queue_size": -1}, "queue size"),
            ({"method": "merge"}, "method"),
            ({"on_error": "retry"}, "on-error"),
            ({"batch_timeout_sec": -1}, "batch timeout"),
            ({"join_timeout_sec": -0.5}, "join timeout"),
            ({"table": "a..b"}, "invalid table name"),
            ({"table": "staging."}, "invalid table name"),
            ({"encoding": "nosuch"}, "unknown encoding"),
            ({"log_level": "bogus"}, "unknown log level"),
        ],
    )
    def test_rejects_invalid(self, overrides, message):
        kwargs = {"table": "events", "source": "data.csv", **overrides}
        with pytest.raises(ValueError, match=message):
            LoadConfig(**kwargs)


class TestSessionSettings:
    def test_minimal(self):
        cfg = LoadConfig(table="t", source="s.csv")
        assert session_settings(cfg) == {"client_min_messages": "warning"}

    def test_async_commit_and_timeout(self):
        cfg = LoadConfig(table="t", source="s.csv", async_commit=True, batch_timeout_sec=2.5)
        settings = session_settings(cfg)
        assert settings["synchronous_commit"] == "off"
        assert settings["statement_timeout"] == "2500"
