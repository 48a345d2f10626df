from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional
import json
import logging
from pathlib import Path

import pyarrow.parquet as pq
from shapely import from_geojson, from_wkb

from .polygon import TilePolygon

logger = logging.getLogger(__name__)


class PolygonSource:
    def iter_polygons(self) -> Iterable[TilePolygon]:
        raise NotImplementedError


def _to_polygon(geom, layer_tag: str, preserve_3d: bool, poly_id) -> Optional[TilePolygon]:
    if geom is None or geom.is_empty:
        return None
    if geom.geom_type not in ("Polygon", "MultiPolygon", "GeometryCollection"):
        logger.debug("skipping %s feature %s", geom.geom_type, poly_id)
        return None
    poly = TilePolygon.from_shapely(
        geom, layer_tag=layer_tag, preserve_3d=preserve_3d, id=poly_id
    )
    return None if poly.is_empty else poly


# ------------------------- GeoParquet source ------------------------- #
class GeoParquetSource(PolygonSource):
    def __init__(
        self,
        path: str,
        geom_col: str = "geometry",
        layer_prop: str = "layer",
        default_layer: Optional[str] = None,
        preserve_3d: bool = False,
    ):
        self.path = path
        self.geom_col = geom_col
        self.layer_prop = layer_prop
        self.default_layer = default_layer or Path(path).stem
        self.preserve_3d = preserve_3d
        self._pf = pq.ParquetFile(path)
        self._num_row_groups = self._pf.num_row_groups
        if geom_col not in self._pf.schema_arrow.names:
            raise ValueError(f"Missing geometry column '{geom_col}' in {path}")
        logger.info("GeoParquetSource opened %s with %d row groups", path, self._num_row_groups)

    def iter_polygons(self) -> Iterable[TilePolygon]:
        names = self._pf.schema_arrow.names
        columns = [self.geom_col] + ([self.layer_prop] if self.layer_prop in names else [])
        row = 0
        for i in range(self._num_row_groups):
            logger.debug("Reading row group %d/%d", i, self._num_row_groups)
            t = self._pf.read_row_group(i, columns=columns).combine_chunks()
            geoms = from_wkb(t[self.geom_col].to_numpy(zero_copy_only=False))
            layers = (
                t[self.layer_prop].to_pylist()
                if self.layer_prop in t.column_names
                else [None] * t.num_rows
            )
            for g, layer in zip(geoms, layers):
                layer_tag = str(layer) if layer is not None else self.default_layer
                poly = _to_polygon(g, layer_tag, self.preserve_3d, row)
                row += 1
                if poly is not None:
                    yield poly


# ------------------------- Helpers ------------------------- #
def is_geojson_path(path: str) -> bool:
    p = path.lower()
    return p.endswith((".geojson", ".geojsonl", ".json", ".jsonl"))


# ------------------------- GeoJSON source (streaming) ------------------------- #
class GeoJSONSource(PolygonSource):
    """
    Streams polygon features from GeoJSON / GeoJSONL.

    - For standard FeatureCollection GeoJSON, streams features with `ijson`.
    - For GeoJSON Lines (one Feature per line), reads and batches by line.
    - The layer tag comes from the `layer_prop` property, falling back to
      `default_layer` (the file stem when not given).
    """

    def __init__(
        self,
        path: str,
        batch_rows: int = 1_000,
        layer_prop: str = "layer",
        default_layer: Optional[str] = None,
        preserve_3d: bool = False,
    ):
        self.path = path
        self.batch_rows = int(batch_rows)
        self.layer_prop = layer_prop
        self.default_layer = default_layer or Path(path).stem
        self.preserve_3d = preserve_3d
        self._use_geojsonl = _detect_geojsonl(self.path)

        logger.info("GeoJSONSource opened %s (batch_rows=%d)", path, self.batch_rows)

    def iter_polygons(self) -> Iterable[TilePolygon]:
        row = 0
        for features in _iter_geojson_feature_batches(self.path, self.batch_rows, self._use_geojsonl):
            geoms = _geometries_from_features(features)
            for feat, g in zip(features, geoms):
                props = feat.get("properties") or {}
                poly_id = feat.get("id", row)
                layer = props.get(self.layer_prop) or self.default_layer
                poly = _to_polygon(g, str(layer), self.preserve_3d, poly_id)
                row += 1
                if poly is not None:
                    yield poly


def _geometries_from_features(features: List[Dict[str, Any]]) -> List[Any]:
    """
    Vectorized GeoJSON geometry parsing.

    Keeps the heavy work inside GEOS by handing shapely.from_geojson an array
    of compact JSON strings rather than building shapes one feature at a time.
    """
    out: List[Any] = [None] * len(features)
    non_null_idx: List[int] = []
    geojson_strings: List[str] = []

    for idx, feat in enumerate(features):
        geom = feat.get("geometry")
        if geom is None:
            continue
        non_null_idx.append(idx)
        geojson_strings.append(json.dumps(geom, separators=(",", ":"), default=float))

    if not geojson_strings:
        return out

    for idx, g in zip(non_null_idx, from_geojson(geojson_strings)):
        out[idx] = g
    return out


def _iter_geojson_feature_batches_with_ijson(path: str, batch_size: int) -> Iterable[List[Dict[str, Any]]]:
    """
    Stream a GeoJSON FeatureCollection in batches using ijson to avoid loading
    the entire file in memory.
    """
    import ijson

    batch: List[Dict[str, Any]] = []
    with open(path, "rb") as fin:
        for feature in ijson.items(fin, "features.item", use_float=True):
            batch.append(feature)
            if len(batch) >= batch_size:
                yield batch
                batch = []

    if batch:
        yield batch


def _iter_geojsonl_feature_batches(path: str, batch_size: int) -> Iterable[List[Dict[str, Any]]]:
    """
    Stream a GeoJSON Lines file (one Feature per line) in batches.
    """
    batch: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as fin:
        for line in fin:
            line = line.strip()
            if not line:
                continue
            batch.append(json.loads(line))
            if len(batch) >= batch_size:
                yield batch
                batch = []
    if batch:
        yield batch


def _iter_geojson_feature_batches(path: str, batch_size: int, use_geojsonl: bool) -> Iterable[List[Dict[str, Any]]]:
    if use_geojsonl:
        logger.info("Detected GeoJSON Lines file for %s", path)
        yield from _iter_geojsonl_feature_batches(path, batch_size)
    else:
        logger.info("Detected FeatureCollection GeoJSON file for %s", path)
        yield from _iter_geojson_feature_batches_with_ijson(path, batch_size)


def _detect_geojsonl(path: str, sniff_bytes: int = 64 * 1024) -> bool:
    """A file whose first non-empty line parses as a Feature is GeoJSON Lines."""
    try:
        with open(path, "r", encoding="utf-8") as fin:
            buffer = fin.read(sniff_bytes)
    except OSError:
        return False

    for line in buffer.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            obj = json.loads(stripped)
        except json.JSONDecodeError:
            return False
        return isinstance(obj, dict) and obj.get("type") == "Feature"
    return False


def build_source(
    input_path: str,
    layer_prop: str = "layer",
    default_layer: Optional[str] = None,
    preserve_3d: bool = False,
) -> PolygonSource:
    if is_geojson_path(input_path):
        logger.info("Using GeoJSONSource for %s", input_path)
        return GeoJSONSource(input_path, layer_prop=layer_prop,
                             default_layer=default_layer, preserve_3d=preserve_3d)
    logger.info("Using GeoParquetSource for %s", input_path)
    return GeoParquetSource(input_path, layer_prop=layer_prop,
                            default_layer=default_layer, preserve_3d=preserve_3d)
