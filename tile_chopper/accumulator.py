from __future__ import annotations
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple, Union
import logging

import shapely
from shapely import STRtree
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from .config import SliverConfig
from .polygon import Ring, TilePolygon

logger = logging.getLogger(__name__)


class PolygonAccumulator:
    """Running union of the geometry emitted so far in one build session.

    Feeding layers through :meth:`diff_and_add` from highest to lowest
    priority leaves every later layer with only the area no earlier layer
    claimed, so the outputs never overlap.
    """

    def __init__(self, config: Optional[SliverConfig] = None):
        self.config = config or SliverConfig()
        self._parts: List[BaseGeometry] = []
        self._tree: Optional[STRtree] = None
        self._union: Optional[BaseGeometry] = None

    # ---------------- state ---------------- #
    @property
    def is_empty(self) -> bool:
        return not self._parts

    @property
    def geometry(self) -> BaseGeometry:
        if self._union is None:
            self._union = shapely.union_all(self._parts) if self._parts else shapely.Polygon()
        return self._union

    def clear(self) -> None:
        self._parts = []
        self._tree = None
        self._union = None

    def add(self, polygon: TilePolygon) -> None:
        geom = polygon.to_shapely()
        if geom.is_empty:
            return
        self._parts.append(geom)
        self._tree = None
        self._union = None

    # ---------------- overlap removal ---------------- #
    def diff(self, polygon: TilePolygon) -> TilePolygon:
        """``polygon`` minus the accumulated geometry overlapping its bounding box."""
        subject = polygon.to_shapely()
        if subject.is_empty or not self._parts:
            return polygon

        if self._tree is None:
            self._tree = STRtree(self._parts)
        hits = self._tree.query(box(*subject.bounds))
        if len(hits) == 0:
            return polygon

        clip = shapely.union_all([self._parts[i] for i in hits])
        result = polygon.with_geometry(subject.difference(clip))
        if polygon.preserve_3d:
            result = result.inherit_elevations(polygon)
        logger.debug(
            "diff %s (%s): %d overlapping parts, area %.3g -> %.3g",
            polygon.id, polygon.layer_tag, len(hits), subject.area, result.area,
        )
        return result

    def diff_and_add(self, polygon: TilePolygon) -> TilePolygon:
        result = self.diff(polygon)
        self.add(polygon)
        return result

    # ---------------- slivers ---------------- #
    def is_sliver(self, ring: Ring) -> bool:
        shape = ring.to_shapely()
        if shape.is_empty:
            return True
        perimeter = shape.length
        if perimeter <= 0.0 or shape.area / perimeter < self.config.min_ratio:
            return True
        if self.config.min_width > 0.0 and shape.buffer(-0.5 * self.config.min_width).is_empty:
            return True
        return False

    def find_slivers(self, polygon: TilePolygon) -> List[Ring]:
        """Rings of ``polygon`` too thin or too small to stand on their own.

        Both outer rings and holes are reported; a sliver hole is a thin gap.
        """
        return [r for r in polygon.rings if not r.is_degenerate() and self.is_sliver(r)]

    def remove_slivers(self, polygon: TilePolygon) -> Tuple[TilePolygon, List[Ring]]:
        """Split ``polygon`` into its usable part and its sliver outer rings.

        Sliver outer rings are removed and handed back for :meth:`merge_slivers`.
        Sliver holes stay in the polygon: a thin hole left by :meth:`diff` is
        area an earlier layer already claimed, and closing it would overlap
        that layer.
        """
        kept: List[Ring] = []
        slivers: List[Ring] = []
        for ring in polygon.rings:
            if ring.is_degenerate():
                continue
            if not ring.is_hole and self.is_sliver(ring):
                slivers.append(ring)
                continue
            kept.append(ring)
        if len(kept) == polygon.contour_count:
            return polygon, slivers
        return replace(polygon, rings=tuple(kept)), slivers

    def merge_slivers(
        self,
        slivers: Sequence[Union[Ring, TilePolygon]],
        candidates: Sequence[TilePolygon],
    ) -> List[TilePolygon]:
        """Fold each sliver into the first candidate it joins cleanly.

        A merge is accepted when the candidate's contour count changes by no
        more than ``config.contour_slack``. Slivers nobody accepts are dropped.
        Returns the candidates with merged geometry, in their original order.
        """
        out = list(candidates)
        rings: List[Ring] = []
        for s in slivers:
            if isinstance(s, TilePolygon):
                rings.extend(r for r in s.rings if not r.is_hole)
            elif not s.is_hole:
                rings.append(s)

        dropped = 0
        for i, ring in enumerate(rings):
            sliver = ring.to_shapely()
            if sliver.is_empty:
                continue
            for k, cand in enumerate(out):
                merged = cand.with_geometry(cand.to_shapely().union(sliver))
                if abs(merged.contour_count - cand.contour_count) <= self.config.contour_slack:
                    if cand.preserve_3d:
                        merged = merged.inherit_elevations(replace(cand, rings=cand.rings + (ring,)))
                    logger.debug("sliver %d merged into %s (%s)", i, cand.id, cand.layer_tag)
                    out[k] = merged
                    break
            else:
                dropped += 1
                lon, lat = ring.coords[0]
                logger.warning(
                    "could not merge sliver %d near (%.7f, %.7f), area %.3g: dropped",
                    i, lon, lat, sliver.area,
                )

        if rings:
            logger.info("merged %d of %d slivers", len(rings) - dropped, len(rings))
        return out
