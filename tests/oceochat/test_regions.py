"""Tests for the static region table and free-text resolution."""

import pytest

from oceochat.data.regions import (
    DEFAULT_REGION,
    DEFAULT_STATION,
    KNOWN_REGIONS,
    get_region,
    known_region_ids,
    resolve_region,
)


class TestResolveRegion:
    def test_city_name_in_sentence(self):
        region = resolve_region("What is the sea surface temperature near Mumbai this week?")
        assert region.id == "mumbai"
        assert region.station_id == "9411340"

    def test_case_insensitive(self):
        assert resolve_region("MUMBAI tides").id == "mumbai"
        assert resolve_region("mumbai tides").id == "mumbai"

    def test_alias(self):
        assert resolve_region("old Bombay harbour").id == "mumbai"
        assert resolve_region("Madras coast").id == "chennai"

    def test_city_beats_sea(self):
        assert resolve_region("Mumbai on the Arabian Sea").id == "mumbai"

    def test_sea_beats_basin(self):
        assert resolve_region("Arabian Sea in the Indian Ocean").id == "arabian_sea"

    def test_specific_basin_before_generic(self):
        assert resolve_region("salinity in the North Atlantic").id == "north_atlantic"
        assert resolve_region("salinity in the Atlantic").id == "atlantic"

    def test_no_match_returns_default(self):
        region = resolve_region("hello there")
        assert region == DEFAULT_REGION
        assert region.id == "indian_ocean"

    def test_empty_text_returns_default(self):
        assert resolve_region("") == DEFAULT_REGION

    def test_idempotent(self):
        text = "chlorophyll in the Bay of Bengal"
        assert resolve_region(text) == resolve_region(text)

    def test_basin_inherits_default_station(self):
        assert resolve_region("Bay of Bengal").station_id == DEFAULT_STATION
        assert DEFAULT_REGION.station_id == DEFAULT_STATION

    def test_whole_words_only(self):
        assert resolve_region("What are the goals of the Argo program?") == DEFAULT_REGION
        assert resolve_region("salinity in the Atlanticus dataset") == DEFAULT_REGION

    def test_antarctic_is_not_arctic(self):
        region = resolve_region("Sea ice around Antarctica and the Antarctic Circumpolar Current")
        assert region.id == "southern_ocean"
        assert region.bounding_box.north < 0

    def test_arctic_still_matches(self):
        assert resolve_region("Arctic sea ice extent").id == "arctic"

    def test_multiword_name_across_case(self):
        assert resolve_region("GULF OF MANNAR reefs").id == "gulf_of_mannar"


class TestRegionTable:
    def test_get_region(self):
        assert get_region("chennai").station_id == "8762483"

    def test_get_unknown_region_raises(self):
        with pytest.raises(KeyError):
            get_region("atlantis")

    def test_every_region_has_a_station(self):
        for _, region in KNOWN_REGIONS:
            assert region.station_id

    def test_known_ids_unique_and_complete(self):
        ids = known_region_ids()
        assert len(ids) == len(set(ids))
        assert "indian_ocean" in ids
        assert {region.id for _, region in KNOWN_REGIONS} == set(ids)

    def test_boxes_are_ordered(self):
        for _, region in KNOWN_REGIONS:
            box = region.bounding_box
            assert box.north > box.south

    def test_as_dict_uses_wire_keys(self):
        data = get_region("mumbai").as_dict()
        assert data["boundingBox"]["north"] == 20.0
        assert data["stationId"] == "9411340"
