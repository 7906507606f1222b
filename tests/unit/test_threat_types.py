"""Unit tests for the engine data model (wrserver.engine.models)."""

from __future__ import annotations

import pytest
from conftest import FakeEngine

from wrserver.engine import ALL_THREAT_TYPES, Stats, ThreatEngine, ThreatType, parse_threat_types
from wrserver.messages import SearchUrisResponse


class TestParseThreatTypes:
    def test_all(self) -> None:
        assert parse_threat_types("ALL") == ALL_THREAT_TYPES
        assert ThreatType.THREAT_TYPE_UNSPECIFIED not in ALL_THREAT_TYPES

    def test_list_is_case_insensitive_and_deduplicated(self) -> None:
        assert parse_threat_types("malware, SOCIAL_ENGINEERING,MALWARE") == (
            ThreatType.MALWARE,
            ThreatType.SOCIAL_ENGINEERING,
        )

    @pytest.mark.parametrize("value", ["", " , ", "PHISHING", "THREAT_TYPE_UNSPECIFIED", "ALL,MALWARE"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_threat_types(value)


def test_threat_type_numbers_match_wire_enum() -> None:
    enum_descriptor = SearchUrisResponse.DESCRIPTOR.nested_types_by_name["ThreatUri"].fields_by_name[
        "threat_types"
    ].enum_type
    for threat_type in ThreatType:
        assert enum_descriptor.values_by_name[threat_type.name].number == threat_type.value


def test_stats_to_dict_keys() -> None:
    assert list(Stats().to_dict()) == [
        "QueriesByDatabase",
        "QueriesByCache",
        "QueriesByAPI",
        "QueriesFail",
        "DatabaseUpdateLag",
    ]


def test_fake_engine_satisfies_protocol() -> None:
    assert isinstance(FakeEngine(), ThreatEngine)
