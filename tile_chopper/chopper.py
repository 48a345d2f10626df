from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union
import logging
import threading

from shapely.geometry import box

from .bucket import (
    HALF_BUCKET_SPAN,
    Bucket,
    bounds_of,
    bucket_for,
    bucket_starting_at,
    diff,
    offset,
)
from .config import ChopConfig
from .errors import GeometrySpanError, TileStoreError
from .polygon import TEX_BY_GEODE, TilePolygon
from .tile_index import PersistentTileIndex
from .tile_store import TileStore

logger = logging.getLogger(__name__)

SplitHook = Callable[[int, float], None]


# Grid lookups snap points lying within EPSILON of an edge onto it. For the
# corners of an extent that would leave the strip between the corner and the
# edge unclipped, so the corner buckets are widened back over the point.
def _first_bucket(lon: float, lat: float) -> Bucket:
    """South-west bucket of an extent whose lower-left corner is ``(lon, lat)``."""
    b = bucket_starting_at(lon, lat)
    lo, _ = bounds_of(b)
    if lat < lo.lat and lo.lat > -90.0:
        b = bucket_starting_at(lon, lo.lat - HALF_BUCKET_SPAN)
        lo, _ = bounds_of(b)
    if not b.is_polar and lon < lo.lon and lo.lon > -180.0:
        b = bucket_starting_at(lo.lon - 0.5 * b.width, b.center_lat)
    return b


def _last_bucket(lon: float, lat: float) -> Bucket:
    """North-east bucket of an extent whose upper-right corner is ``(lon, lat)``."""
    b = bucket_for(lon, lat)
    _, hi = bounds_of(b)
    if lat > hi.lat and hi.lat < 90.0:
        b = bucket_for(lon, hi.lat + HALF_BUCKET_SPAN)
        _, hi = bounds_of(b)
    if not b.is_polar and lon > hi.lon and hi.lon < 180.0:
        b = bucket_for(hi.lon + 0.5 * b.width, b.center_lat)
    return b


class Chopper:
    """Cuts polygons along bucket boundaries and collects the pieces per bucket.

    ``add`` may be called from several threads; the only shared state is the
    bucket -> fragment list map, and appending to it is the only locked step.
    ``save`` flushes every bucket's list to ``root_path`` once.
    """

    def __init__(
        self,
        root_path: Union[str, Path],
        config: Optional[ChopConfig] = None,
        index: Optional[PersistentTileIndex] = None,
        store: Optional[TileStore] = None,
        on_split: Optional[SplitHook] = None,
    ):
        self.root_path = Path(root_path)
        self.config = config or ChopConfig()
        self.index = index or PersistentTileIndex(self.config.index_file, self.config.lock_name)
        self.store = store or TileStore(self.config.compression)
        self.on_split = on_split
        self._fragments: Dict[int, List[TilePolygon]] = {}
        self._lock = threading.Lock()
        self._splits = 0

    # ------------------------------------------------------------------
    @property
    def fragment_count(self) -> int:
        return sum(len(v) for v in self._fragments.values())

    @property
    def split_count(self) -> int:
        """Half-plane splits performed so far by ``add``."""
        return self._splits

    def buckets(self) -> List[Bucket]:
        return [Bucket.from_index(i) for i in sorted(self._fragments)]

    def fragments(self, bucket: Bucket) -> List[TilePolygon]:
        return list(self._fragments.get(bucket.index, ()))

    # ------------------------------------------------------------------
    def clip(self, subject: TilePolygon, layer_tag: str, bucket: Bucket) -> Optional[TilePolygon]:
        lo, hi = bounds_of(bucket)
        logger.debug("clip %s to %s (%s) (%s)", subject.id, bucket, lo, hi)

        result = subject.with_geometry(
            subject.to_shapely().intersection(box(lo.lon, lo.lat, hi.lon, hi.lat))
        )
        if result.contour_count == 0:
            return None

        if subject.preserve_3d:
            result = result.inherit_elevations(subject)

        tp = subject.tex_params
        if tp is not None and tp.method == TEX_BY_GEODE:
            # geodetic texturing is relative to the bucket's latitude
            tp = replace(tp, center_lat=bucket.center_lat)
        result = replace(result, layer_tag=layer_tag, tex_params=tp)

        with self._lock:
            self._fragments.setdefault(bucket.index, []).append(result)
        return result

    def add(self, subject: TilePolygon, layer_tag: Optional[str] = None) -> None:
        if layer_tag is not None and layer_tag != subject.layer_tag:
            subject = replace(subject, layer_tag=layer_tag)
        self._add(subject, 0)

    def _add(self, subject: TilePolygon, depth: int) -> None:
        if subject.is_empty:
            logger.debug("skipping empty polygon %s (%s)", subject.id, subject.layer_tag)
            return

        min_lon, min_lat, max_lon, max_lat = subject.bounds()
        logger.debug("  min = (%f, %f) max = (%f, %f)", min_lon, min_lat, max_lon, max_lat)

        # the antimeridian is not handled: a polygon crossing it is chopped
        # as if it wrapped the long way round
        b_min = _first_bucket(min_lon, min_lat)
        b_max = _last_bucket(max_lon, max_lat)

        if b_min == b_max:
            self.clip(subject, subject.layer_tag, b_min)
            return

        dx, dy = diff(b_min, b_max)
        logger.debug("  polygon spans tile boundaries: dx = %d  dy = %d", dx, dy)

        if dx > self.config.max_dx or dy > self.config.max_dy:
            raise GeometrySpanError(
                f"polygon {subject.id!r} ({subject.layer_tag}) spans dx={dx} dy={dy} "
                f"buckets from {b_min} to {b_max}; "
                f"limit is dx={self.config.max_dx} dy={self.config.max_dy}"
            )

        if dy <= 1:
            self._clip_rows(subject, b_min, dy, min_lon, max_lon)
            return

        # two or more rows left: split along the top of the middle row and recurse
        mid = (dy + 1) // 2 - 1
        b_clip = offset(b_min, 0, mid)
        clip_line = min(b_clip.center_lat + HALF_BUCKET_SPAN, 90.0)
        with self._lock:
            self._splits += 1
        if self.on_split is not None:
            self.on_split(depth, clip_line)

        geom = subject.to_shapely()

        logger.debug("Generating bottom half (%f-%f)", min_lat, clip_line)
        bottom = subject.with_geometry(geom.intersection(box(-180.0, min_lat, 180.0, clip_line)))
        self._add(bottom, depth + 1)

        logger.debug("Generating top half (%f-%f)", clip_line, max_lat)
        top = subject.with_geometry(geom.intersection(box(-180.0, clip_line, 180.0, max_lat)))
        if not top.is_empty and top.bounds()[1] <= min_lat:
            raise GeometrySpanError(
                f"polygon {subject.id!r} ({subject.layer_tag}) did not shrink when split "
                f"at latitude {clip_line} (bucket {b_clip})"
            )
        self._add(top, depth + 1)

    def _clip_rows(self, subject: TilePolygon, b_min: Bucket, dy: int,
                   min_lon: float, max_lon: float) -> None:
        # rows may differ in width, so each row is walked from its own first column
        for j in range(dy + 1):
            row = offset(b_min, 0, j)
            first = _first_bucket(min_lon, row.center_lat)
            last = _last_bucket(max_lon, row.center_lat)
            cols, _ = diff(first, last)
            for i in range(cols + 1):
                self.clip(subject, subject.layer_tag, offset(first, i, 0))

    def add_many(self, polygons: Iterable[TilePolygon], max_workers: Optional[int] = None) -> None:
        workers = max_workers or self.config.max_workers
        if workers <= 1:
            for p in polygons:
                self.add(p)
            return
        with ThreadPoolExecutor(max_workers=workers) as ex:
            # list() re-raises the first failure
            list(ex.map(self.add, polygons))

    # ------------------------------------------------------------------
    def save(self) -> List[Path]:
        with self._lock:
            pending, self._fragments = self._fragments, {}

        written: List[Path] = []
        for index in sorted(pending):
            bucket = Bucket.from_index(index)
            polys = pending[index]
            tile_dir = self.root_path / bucket.base_path
            try:
                tile_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise TileStoreError(f"cannot create {tile_dir} for bucket {bucket}: {e}") from e

            seq = self.index.generate_index(tile_dir)
            path = tile_dir / f"{index}.{seq}"
            self.store.write_fragments(path, polys)
            written.append(path)

        logger.info(
            "Saved %d fragments in %d buckets under %s",
            sum(len(v) for v in pending.values()), len(pending), self.root_path,
        )
        return written
