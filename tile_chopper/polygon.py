from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import shapely
from shapely import make_valid
from shapely.geometry import (
    Polygon,
    MultiPolygon,
    GeometryCollection,
)
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

logger = logging.getLogger(__name__)

Bounds = Tuple[float, float, float, float]

TEX_BY_GEODE = "by_geode"


# ------------------------------- Values ------------------------------------

@dataclass(frozen=True)
class GeoPoint:
    lon: float
    lat: float
    elev: Optional[float] = None


@dataclass(frozen=True)
class TexParams:
    """Texture mapping block carried through the chopper untouched.

    Only ``center_lat`` is ever rewritten, and only for geodetic texturing
    (``method == "by_geode"``), where it must be the latitude of the bucket
    the fragment ends up in.
    """
    ref_lon: float = 0.0
    ref_lat: float = 0.0
    width: float = 0.0
    length: float = 0.0
    heading: float = 0.0
    minu: float = 0.0
    maxu: float = 1.0
    minv: float = 0.0
    maxv: float = 1.0
    method: str = ""
    center_lat: float = 0.0


@dataclass(frozen=True)
class Ring:
    points: Tuple[GeoPoint, ...]
    is_hole: bool = False

    def __post_init__(self):
        pts = tuple(self.points)
        # closing vertex is implicit
        if len(pts) > 1 and (pts[0].lon, pts[0].lat) == (pts[-1].lon, pts[-1].lat):
            pts = pts[:-1]
        object.__setattr__(self, "points", pts)

    @classmethod
    def from_coords(cls, coords: Iterable[Sequence[float]], is_hole: bool = False) -> "Ring":
        pts = []
        for c in coords:
            elev = float(c[2]) if len(c) > 2 and c[2] is not None else None
            pts.append(GeoPoint(float(c[0]), float(c[1]), elev))
        return cls(tuple(pts), is_hole)

    @property
    def coords(self) -> List[Tuple[float, float]]:
        return [(p.lon, p.lat) for p in self.points]

    def __len__(self) -> int:
        return len(self.points)

    def is_degenerate(self) -> bool:
        return len(set(self.coords)) < 3

    def to_shapely(self) -> BaseGeometry:
        """Area enclosed by the ring, repaired if the ring self-intersects."""
        if self.is_degenerate():
            return Polygon()
        shape = Polygon(self.coords)
        if not shape.is_valid:
            shape = _polygonal(make_valid(shape))
        return shape


@dataclass(frozen=True)
class TilePolygon:
    """A polygon as exchanged with upstream producers and written to tiles.

    Rings flagged ``is_hole`` are cut out of the union of the other rings.
    Instances are never mutated; geometry operations return new values that
    keep ``layer_tag``, ``tex_params``, ``preserve_3d``, ``material`` and ``id``.
    """
    rings: Tuple[Ring, ...] = ()
    layer_tag: str = ""
    tex_params: Optional[TexParams] = None
    preserve_3d: bool = False
    material: str = ""
    id: Optional[Union[int, str]] = None

    def __post_init__(self):
        object.__setattr__(self, "rings", tuple(self.rings))

    # ---------------- construction ---------------- #
    @classmethod
    def from_shapely(cls, geom: Optional[BaseGeometry], **meta) -> "TilePolygon":
        return cls(rings=tuple(_rings_from_geometry(geom)), **meta)

    def with_geometry(self, geom: Optional[BaseGeometry]) -> "TilePolygon":
        return replace(self, rings=tuple(_rings_from_geometry(geom)))

    # ---------------- inspection ---------------- #
    @property
    def contour_count(self) -> int:
        return len(self.rings)

    @property
    def total_nodes(self) -> int:
        return sum(len(r) for r in self.rings)

    @property
    def is_empty(self) -> bool:
        return not any(not r.is_hole and not r.is_degenerate() for r in self.rings)

    def bounds(self) -> Bounds:
        pts = np.array([c for r in self.rings for c in r.coords], dtype=np.float64)
        if pts.size == 0:
            raise ValueError(f"polygon {self.id!r} ({self.layer_tag}) has no vertices")
        mins = pts.min(axis=0)
        maxs = pts.max(axis=0)
        return float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1])

    @property
    def area(self) -> float:
        return float(self.to_shapely().area)

    def to_shapely(self) -> BaseGeometry:
        """Planar lon/lat geometry: union of the outer rings minus the holes."""
        shells = [r.to_shapely() for r in self.rings if not r.is_hole]
        holes = [r.to_shapely() for r in self.rings if r.is_hole]
        shells = [s for s in shells if not s.is_empty]
        if not shells:
            return Polygon()
        geom = shapely.union_all(shells) if len(shells) > 1 else shells[0]
        holes = [h for h in holes if not h.is_empty]
        if holes:
            geom = geom.difference(shapely.union_all(holes))
        return _polygonal(geom)

    # ---------------- elevations ---------------- #
    def inherit_elevations(self, source: "TilePolygon") -> "TilePolygon":
        """Give each vertex the elevation of the nearest vertex of ``source``."""
        src = np.array(
            [(p.lon, p.lat, p.elev) for r in source.rings for p in r.points if p.elev is not None],
            dtype=np.float64,
        )
        if src.size == 0:
            return self

        rings = []
        for ring in self.rings:
            if not ring.points:
                rings.append(ring)
                continue
            xy = np.asarray(ring.coords, dtype=np.float64)
            d2 = ((xy[:, None, :] - src[None, :, :2]) ** 2).sum(axis=2)
            nearest = d2.argmin(axis=1)
            pts = tuple(
                GeoPoint(p.lon, p.lat, float(src[k, 2]))
                for p, k in zip(ring.points, nearest)
            )
            rings.append(Ring(pts, ring.is_hole))
        return replace(self, rings=tuple(rings))


# ------------------------------- Helpers ------------------------------------

def explode_collections(geom: Optional[BaseGeometry]) -> List[Polygon]:
    """Polygon parts of an overlay result; points and lines are dropped."""
    if geom is None or geom.is_empty:
        return []

    if isinstance(geom, Polygon):
        return [geom]

    if isinstance(geom, (MultiPolygon, GeometryCollection)):
        out = []
        for g in geom.geoms:
            out.extend(explode_collections(g))
        return out

    return []


def _polygonal(geom: Optional[BaseGeometry]) -> BaseGeometry:
    parts = [p for p in explode_collections(geom) if p.area > 0.0]
    if not parts:
        return Polygon()
    if len(parts) == 1:
        return parts[0]
    return MultiPolygon(parts)


def _rings_from_geometry(geom: Optional[BaseGeometry]) -> List[Ring]:
    rings: List[Ring] = []
    for part in explode_collections(geom):
        if part.area <= 0.0:
            continue
        # counter-clockwise shells, clockwise holes
        part = orient(part, sign=1.0)
        rings.append(Ring.from_coords(part.exterior.coords, is_hole=False))
        for interior in part.interiors:
            hole = Ring.from_coords(interior.coords, is_hole=True)
            if not hole.is_degenerate():
                rings.append(hole)
    return rings
