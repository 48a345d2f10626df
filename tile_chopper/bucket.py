"""Global bucket grid.

Rows are 1/8 degree high everywhere. Column width depends on the latitude
band the row sits in and grows towards the poles; from 89 degrees on, a single
bucket spans every longitude of its row. Columns of 2 degrees and wider are
counted from -180 so that they tile the full circle without overlap.

Bucket ids pack ``(lon, lat, x, y)`` into one integer:
``((lon + 180) << 14) + ((lat + 90) << 6) + (y << 3) + x`` where ``lon``/``lat``
are the integer degree of the bucket's south-west corner, ``y`` the row inside
that degree and ``x`` the column inside that degree (0 for widths >= 1).
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple
import math

from .polygon import GeoPoint

BUCKET_SPAN = 0.125
HALF_BUCKET_SPAN = 0.5 * BUCKET_SPAN
EPSILON = 1e-7

# (lower latitude edge, width) for the northern hemisphere, widest first
_NORTH_BANDS = (
    (89.0, 360.0),
    (88.0, 8.0),
    (86.0, 4.0),
    (83.0, 2.0),
    (76.0, 1.0),
    (62.0, 0.5),
    (22.0, 0.25),
)
# (lower latitude edge, width) south of the equatorial band
_SOUTH_BANDS = (
    (-62.0, 0.25),
    (-76.0, 0.5),
    (-83.0, 1.0),
    (-86.0, 2.0),
    (-88.0, 4.0),
    (-89.0, 8.0),
)


def bucket_span(lat: float) -> float:
    """Longitude width of the buckets at ``lat``."""
    for edge, width in _NORTH_BANDS:
        if lat >= edge:
            return width
    if lat >= -22.0:
        return BUCKET_SPAN
    for edge, width in _SOUTH_BANDS:
        if lat >= edge:
            return width
    return 360.0


@dataclass(frozen=True)
class Bucket:
    lon: int
    lat: int
    x: int = 0
    y: int = 0

    # ---------------- geometry ---------------- #
    @property
    def center_lat(self) -> float:
        return self.lat + self.y / 8.0 + HALF_BUCKET_SPAN

    @property
    def width(self) -> float:
        return bucket_span(self.center_lat)

    @property
    def height(self) -> float:
        return BUCKET_SPAN

    @property
    def center_lon(self) -> float:
        span = self.width
        if span >= 1.0:
            return self.lon + span / 2.0
        return self.lon + self.x * span + span / 2.0

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(self.center_lon, self.center_lat)

    @property
    def is_polar(self) -> bool:
        return self.width >= 360.0

    # ---------------- naming ---------------- #
    @property
    def index(self) -> int:
        return ((self.lon + 180) << 14) + ((self.lat + 90) << 6) + (self.y << 3) + self.x

    @classmethod
    def from_index(cls, index: int) -> "Bucket":
        return cls(
            lon=(index >> 14) - 180,
            lat=((index >> 6) & 0xFF) - 90,
            x=index & 0x7,
            y=(index >> 3) & 0x7,
        )

    @property
    def base_path(self) -> str:
        """Geographic shard: 10x10 degree chunk, then 1x1 degree tile, e.g. ``e010n40/e012n43``."""
        top_lon = math.floor(self.lon / 10) * 10
        top_lat = math.floor(self.lat / 10) * 10
        hem = "e" if top_lon >= 0 else "w"
        pole = "n" if top_lat >= 0 else "s"
        return "%s%03d%s%02d/%s%03d%s%02d" % (
            hem, abs(top_lon), pole, abs(top_lat),
            hem, abs(self.lon), pole, abs(self.lat),
        )

    def __str__(self) -> str:
        return f"{self.base_path}/{self.index}"


# ------------------------------- Lookup ------------------------------------

def _floor_deg(value: float) -> int:
    nearest = round(value)
    if abs(value - nearest) < EPSILON:
        return int(nearest)
    return math.floor(value)


def bucket_starting_at(lon: float, lat: float) -> Bucket:
    """Bucket whose south-west part contains the point.

    A point lying on a bucket edge is assigned to the bucket to its north and
    east. This is how the lower corner of an extent is resolved.
    """
    lat = min(max(lat, -90.0), 90.0)
    if lat >= 90.0 - EPSILON:
        lat_deg, y = 89, 7
    else:
        lat_deg = _floor_deg(lat)
        y = min(7, max(0, int((lat - lat_deg) * 8)))
        if abs(lat - (lat_deg + (y + 1) / 8.0)) < EPSILON:
            y += 1
            if y == 8:
                lat_deg, y = lat_deg + 1, 0

    center_lat = lat_deg + y / 8.0 + HALF_BUCKET_SPAN
    span = bucket_span(center_lat)

    if span >= 360.0:
        return Bucket(-180, lat_deg, 0, y)

    lon = min(max(lon, -180.0), 180.0)
    if span <= 1.0:
        cols = int(round(1.0 / span))
        lon_deg = _floor_deg(lon)
        x = min(cols - 1, max(0, int((lon - lon_deg) / span)))
        if abs(lon - (lon_deg + (x + 1) * span)) < EPSILON:
            x += 1
            if x == cols:
                lon_deg, x = lon_deg + 1, 0
        if lon_deg >= 180:
            # the antimeridian itself belongs to the last column
            lon_deg, x = 179, cols - 1
        return Bucket(lon_deg, lat_deg, x, y)

    # wide columns are counted from the western grid edge
    cols = int(round(360.0 / span))
    k = _floor_deg((lon + 180.0) / span)
    k = min(max(k, 0), cols - 1)
    return Bucket(int(-180 + k * span), lat_deg, 0, y)


def bucket_for(lon: float, lat: float) -> Bucket:
    """Bucket containing a geographic point.

    Total and deterministic over ``[-180, 180] x [-90, 90]``. A point on a
    bucket edge rounds toward the lower-latitude / lower-longitude bucket,
    except on the south pole and the western grid edge where no such bucket
    exists.
    """
    b = bucket_starting_at(lon, lat)
    lo, _ = bounds_of(b)
    if lat > -90.0 + EPSILON and abs(lat - lo.lat) < EPSILON:
        b = bucket_starting_at(lon, lo.lat - HALF_BUCKET_SPAN)
        lo, _ = bounds_of(b)
    if not b.is_polar and lon > -180.0 + EPSILON and abs(lon - lo.lon) < EPSILON:
        b = bucket_starting_at(lo.lon - 0.5 * b.width, b.center_lat)
    return b


def bounds_of(bucket: Bucket) -> Tuple[GeoPoint, GeoPoint]:
    """South-west and north-east corners of the bucket's clip rectangle."""
    clat = bucket.center_lat
    if bucket.is_polar:
        lo_lat = clat - HALF_BUCKET_SPAN
        return GeoPoint(-180.0, lo_lat), GeoPoint(180.0, lo_lat + BUCKET_SPAN)
    clon = bucket.center_lon
    half_w = 0.5 * bucket.width
    return (
        GeoPoint(clon - half_w, clat - HALF_BUCKET_SPAN),
        GeoPoint(clon + half_w, clat + HALF_BUCKET_SPAN),
    )


def offset(bucket: Bucket, dx: int, dy: int) -> Bucket:
    """Bucket ``dy`` rows north and then ``dx`` columns east of ``bucket``.

    Columns are counted at the width of the destination row; longitude wraps
    into ``[-180, 180)`` and latitude stops at the outermost polar row.
    """
    clat = bucket.center_lat + dy * BUCKET_SPAN
    clat = min(max(clat, -90.0 + HALF_BUCKET_SPAN), 90.0 - HALF_BUCKET_SPAN)
    span = bucket_span(clat)
    lon = bucket.center_lon + dx * span
    while lon < -180.0:
        lon += 360.0
    while lon >= 180.0:
        lon -= 360.0
    return bucket_starting_at(lon, clat)


def diff(b1: Bucket, b2: Bucket) -> Tuple[int, int]:
    """Column and row distance from ``b1`` to ``b2``.

    Columns are measured in the narrower of the two rows' widths.
    """
    c1_lat = b1.center_lat
    c2_lat = b2.center_lat
    dy = int(round((c2_lat - c1_lat) / BUCKET_SPAN))

    span = min(bucket_span(c1_lat), bucket_span(c2_lat))
    diff_lon = b2.center_lon - b1.center_lon
    correction = 0.5 * b1.width + 0.5 * b2.width - span
    if diff_lon < 0.0:
        diff_lon -= correction
    else:
        diff_lon += correction
    dx = int(round(diff_lon / span))
    return dx, dy
