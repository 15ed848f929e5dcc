"""Static region table and free-text region resolution."""

import re

from oceochat.data.schema import BoundingBox, Region

# Seas and basins have no station of their own and use this one.
DEFAULT_STATION = "9411340"

DEFAULT_REGION = Region(
    id="indian_ocean",
    bounding_box=BoundingBox(north=30.0, south=-30.0, east=120.0, west=40.0),
    station_id=DEFAULT_STATION,
)

# Ordered: coastal cities, then seas, then basins. First match wins, so a
# specific place always beats the basin that contains it.
KNOWN_REGIONS: tuple[tuple[tuple[str, ...], Region], ...] = (
    (("mumbai", "bombay"), Region(
        id="mumbai",
        bounding_box=BoundingBox(north=20.0, south=18.0, east=73.5, west=71.5),
        station_id="9411340",
    )),
    (("chennai", "madras"), Region(
        id="chennai",
        bounding_box=BoundingBox(north=14.0, south=12.0, east=81.5, west=80.0),
        station_id="8762483",
    )),
    (("kolkata", "calcutta"), Region(
        id="kolkata",
        bounding_box=BoundingBox(north=22.5, south=20.5, east=89.5, west=87.5),
        station_id="8761724",
    )),
    (("kochi", "cochin", "kerala"), Region(
        id="kochi",
        bounding_box=BoundingBox(north=11.0, south=8.5, east=76.5, west=74.5),
        station_id="8761889",
    )),
    (("visakhapatnam", "vizag"), Region(
        id="visakhapatnam",
        bounding_box=BoundingBox(north=18.5, south=16.5, east=84.5, west=83.0),
        station_id="8762483",
    )),
    (("goa",), Region(
        id="goa",
        bounding_box=BoundingBox(north=16.0, south=14.5, east=74.0, west=72.5),
        station_id="9411340",
    )),
    (("surat",), Region(
        id="surat",
        bounding_box=BoundingBox(north=22.0, south=20.5, east=73.0, west=71.5),
        station_id="9411340",
    )),
    (("gulf of mannar",), Region(
        id="gulf_of_mannar",
        bounding_box=BoundingBox(north=9.5, south=7.5, east=80.0, west=78.0),
        station_id="8762483",
    )),
    (("lakshadweep",), Region(
        id="lakshadweep",
        bounding_box=BoundingBox(north=12.5, south=8.0, east=74.0, west=71.0),
        station_id=DEFAULT_STATION,
    )),
    (("andaman",), Region(
        id="andaman",
        bounding_box=BoundingBox(north=14.0, south=10.0, east=94.5, west=91.5),
        station_id=DEFAULT_STATION,
    )),
    (("nicobar",), Region(
        id="nicobar",
        bounding_box=BoundingBox(north=9.5, south=6.5, east=94.5, west=92.5),
        station_id=DEFAULT_STATION,
    )),
    (("bay of bengal", "bengal"), Region(
        id="bay_of_bengal",
        bounding_box=BoundingBox(north=22.0, south=5.0, east=95.0, west=80.0),
        station_id=DEFAULT_STATION,
    )),
    (("arabian sea", "arabian"), Region(
        id="arabian_sea",
        bounding_box=BoundingBox(north=25.0, south=10.0, east=75.0, west=60.0),
        station_id=DEFAULT_STATION,
    )),
    (("mediterranean",), Region(
        id="mediterranean",
        bounding_box=BoundingBox(north=46.0, south=30.0, east=36.0, west=-6.0),
        station_id=DEFAULT_STATION,
    )),
    (("north atlantic",), Region(
        id="north_atlantic",
        bounding_box=BoundingBox(north=60.0, south=20.0, east=0.0, west=-80.0),
        station_id=DEFAULT_STATION,
    )),
    (("south atlantic",), Region(
        id="south_atlantic",
        bounding_box=BoundingBox(north=0.0, south=-60.0, east=20.0, west=-70.0),
        station_id=DEFAULT_STATION,
    )),
    (("north pacific",), Region(
        id="north_pacific",
        bounding_box=BoundingBox(north=60.0, south=20.0, east=-100.0, west=100.0),
        station_id=DEFAULT_STATION,
    )),
    (("south pacific",), Region(
        id="south_pacific",
        bounding_box=BoundingBox(north=0.0, south=-60.0, east=-70.0, west=150.0),
        station_id=DEFAULT_STATION,
    )),
    (("atlantic",), Region(
        id="atlantic",
        bounding_box=BoundingBox(north=60.0, south=-60.0, east=0.0, west=-80.0),
        station_id=DEFAULT_STATION,
    )),
    (("pacific",), Region(
        id="pacific",
        bounding_box=BoundingBox(north=60.0, south=-60.0, east=-100.0, west=100.0),
        station_id=DEFAULT_STATION,
    )),
    (("southern ocean", "antarctic", "antarctica"), Region(
        id="southern_ocean",
        bounding_box=BoundingBox(north=-60.0, south=-90.0, east=180.0, west=-180.0),
        station_id=DEFAULT_STATION,
    )),
    (("arctic",), Region(
        id="arctic",
        bounding_box=BoundingBox(north=90.0, south=60.0, east=180.0, west=-180.0),
        station_id=DEFAULT_STATION,
    )),
    (("indian ocean",), DEFAULT_REGION),
)

_PATTERNS: tuple[tuple[re.Pattern[str], Region], ...] = tuple(
    (
        re.compile(
            r"\b(?:" + "|".join(re.escape(name) for name in sorted(names, key=len, reverse=True)) + r")\b",
            re.IGNORECASE,
        ),
        region,
    )
    for names, region in KNOWN_REGIONS
)

_BY_ID: dict[str, Region] = {region.id: region for _, region in KNOWN_REGIONS}


def resolve_region(text: str) -> Region:
    """Map free text to the first known region mentioned, or the default.

    Names match case-insensitively as whole words, so "Antarctic" is not
    read as "arctic".
    """
    for pattern, region in _PATTERNS:
        if pattern.search(text or ""):
            return region
    return DEFAULT_REGION


def get_region(region_id: str) -> Region:
    """Look up a region by id. Raises KeyError for unknown ids."""
    return _BY_ID[region_id]


def known_region_ids() -> list[str]:
    return list(_BY_ID)
