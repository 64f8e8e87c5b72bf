"""Tests for shared data types."""

import pytest

from autovote.shared.models import Challenge, ConfigDocument


class TestChallengeFromDict:
    def test_flat_payload(self):
        c = Challenge.from_dict(
            {
                "id": 7,
                "type": "flash",
                "start_time": 100,
                "close_time": 200,
                "current_exposure": 55,
                "boost_available": True,
                "boost_expires_at": 150,
                "title": "Night",
            }
        )
        assert c.id == "7"
        assert c.is_flash
        assert c.current_exposure == 55.0
        assert c.boost_available
        assert c.boost_expires_at == 150.0
        assert c.title == "Night"

    def test_nested_payload(self):
        c = Challenge.from_dict(
            {
                "id": "abc",
                "type": "default",
                "start_time": 100,
                "close_time": 5000,
                "member": {
                    "ranking": {"exposure": {"exposure_factor": 42}},
                    "boost": {"state": "AVAILABLE", "timeout": 4000},
                },
            }
        )
        assert c.current_exposure == 42.0
        assert c.boost_available
        assert c.boost_expires_at == 4000.0
        assert not c.is_flash

    def test_nested_boost_not_available(self):
        c = Challenge.from_dict(
            {"id": 1, "close_time": 10, "member": {"boost": {"state": "USED", "timeout": 5}}}
        )
        assert not c.boost_available
        assert c.type == "default"
        assert c.current_exposure == 0.0

    def test_missing_close_time_raises(self):
        with pytest.raises(KeyError):
            Challenge.from_dict({"id": 1})

    def test_is_ended(self):
        c = Challenge(id="1", type="default", start_time=0, close_time=100, current_exposure=0)
        assert c.is_ended(100)
        assert not c.is_ended(99)


class TestConfigDocument:
    def test_round_trip(self):
        doc = ConfigDocument({"exposure": 80}, {"1": {"only_boost": True}})
        assert ConfigDocument.from_dict(doc.to_dict()) == doc

    def test_from_dict_ignores_malformed_sections(self):
        doc = ConfigDocument.from_dict({"global_defaults": [1], "per_entity_overrides": {"1": "x", "2": {"a": 1}}})
        assert doc.global_defaults == {}
        assert doc.per_entity_overrides == {"2": {"a": 1}}

    def test_copy_is_deep(self):
        doc = ConfigDocument({}, {"1": {"exposure": 60}})
        clone = doc.copy()
        clone.per_entity_overrides["1"]["exposure"] = 10
        assert doc.per_entity_overrides["1"]["exposure"] == 60
