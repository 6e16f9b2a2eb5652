"""Tests for local time zone resolution."""
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

import services.clock as clock_module
from services.clock import local_now, local_zone


@pytest.fixture(autouse=True)
def isolated_zone(monkeypatch, tmp_path):
    """No configured zone and no host files unless a test provides them."""
    monkeypatch.setattr(clock_module, "TIMEZONE", "")
    monkeypatch.delenv("TZ", raising=False)
    monkeypatch.setattr(clock_module, "LOCALTIME_LINK", tmp_path / "missing-localtime")
    monkeypatch.setattr(clock_module, "TIMEZONE_FILE", tmp_path / "missing-timezone")
    local_zone.cache_clear()
    yield tmp_path
    local_zone.cache_clear()


class TestLocalZone:
    def test_configured_timezone_wins(self, monkeypatch):
        monkeypatch.setattr(clock_module, "TIMEZONE", "America/New_York")
        monkeypatch.setenv("TZ", "Europe/Bucharest")
        assert local_zone() == ZoneInfo("America/New_York")

    def test_tz_environment_variable(self, monkeypatch):
        monkeypatch.setenv("TZ", ":Europe/Bucharest")
        assert local_zone() == ZoneInfo("Europe/Bucharest")

    def test_unknown_configured_zone_falls_through(self, monkeypatch, caplog):
        caplog.set_level(logging.WARNING)
        monkeypatch.setattr(clock_module, "TIMEZONE", "Mars/Olympus_Mons")
        monkeypatch.setenv("TZ", "Asia/Tokyo")
        assert local_zone() == ZoneInfo("Asia/Tokyo")
        assert "Mars/Olympus_Mons" in caplog.text

    def test_localtime_link(self, monkeypatch, isolated_zone):
        target = isolated_zone / "usr" / "share" / "zoneinfo" / "America" / "New_York"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"")
        link = isolated_zone / "localtime"
        link.symlink_to(target)
        monkeypatch.setattr(clock_module, "LOCALTIME_LINK", link)
        assert local_zone() == ZoneInfo("America/New_York")

    def test_timezone_file(self, monkeypatch, isolated_zone):
        zone_file = isolated_zone / "timezone"
        zone_file.write_text("Europe/Paris\n", encoding="utf-8")
        monkeypatch.setattr(clock_module, "TIMEZONE_FILE", zone_file)
        assert local_zone() == ZoneInfo("Europe/Paris")

    def test_fixed_offset_fallback(self, caplog):
        caplog.set_level(logging.WARNING)
        zone = local_zone()
        assert not isinstance(zone, ZoneInfo)
        assert datetime.now(zone).utcoffset() == datetime.now().astimezone().utcoffset()
        assert "falling back" in caplog.text

    def test_resolved_once(self, monkeypatch):
        monkeypatch.setattr(clock_module, "TIMEZONE", "America/New_York")
        first = local_zone()
        monkeypatch.setattr(clock_module, "TIMEZONE", "Asia/Tokyo")
        assert local_zone() is first


class TestLocalNow:
    def test_aware_in_local_zone(self, monkeypatch):
        monkeypatch.setattr(clock_module, "TIMEZONE", "America/New_York")
        now = local_now()
        assert now.tzinfo == ZoneInfo("America/New_York")
        assert now.utcoffset() is not None
