"""
Tests for environment-driven settings.
"""

import pytest
from pydantic import ValidationError

from basecore.settings import Settings


def load(monkeypatch, **env) -> Settings:
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return Settings(_env_file=None)


class TestCorsOrigins:
    """CORS_ORIGINS accepts both documented forms."""

    def test_comma_separated(self, monkeypatch):
        settings = load(monkeypatch, CORS_ORIGINS="http://a.example, http://b.example")
        assert settings.CORS_ORIGINS == ["http://a.example", "http://b.example"]

    def test_json_list(self, monkeypatch):
        settings = load(monkeypatch, CORS_ORIGINS='["http://a.example", "http://b.example"]')
        assert settings.CORS_ORIGINS == ["http://a.example", "http://b.example"]

    def test_single_origin(self, monkeypatch):
        assert load(monkeypatch, CORS_ORIGINS="http://a.example").CORS_ORIGINS == ["http://a.example"]

    def test_unset(self, monkeypatch):
        monkeypatch.delenv("CORS_ORIGINS", raising=False)
        assert Settings(_env_file=None).CORS_ORIGINS == []


class TestPartitions:
    def test_env_value_used(self, monkeypatch):
        assert load(monkeypatch, STREAM_PARTITIONS="8").STREAM_PARTITIONS == 8

    def test_zero_rejected(self, monkeypatch):
        with pytest.raises(ValidationError):
            load(monkeypatch, STREAM_PARTITIONS="0")
