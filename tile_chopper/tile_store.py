from __future__ import annotations
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
import logging

import pyarrow as pa

from .errors import TileStoreError
from .polygon import GeoPoint, Ring, TexParams, TilePolygon

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1"

_POINT = pa.struct([
    ("lon", pa.float64()),
    ("lat", pa.float64()),
    ("elev", pa.float64()),
])
_RING = pa.struct([
    ("is_hole", pa.bool_()),
    ("points", pa.list_(_POINT)),
])
_TEX_PARAMS = pa.struct([
    ("ref_lon", pa.float64()),
    ("ref_lat", pa.float64()),
    ("width", pa.float64()),
    ("length", pa.float64()),
    ("heading", pa.float64()),
    ("minu", pa.float64()),
    ("maxu", pa.float64()),
    ("minv", pa.float64()),
    ("maxv", pa.float64()),
    ("method", pa.string()),
    ("center_lat", pa.float64()),
])

FRAGMENT_SCHEMA = pa.schema([
    ("rings", pa.list_(_RING)),
    ("layer_tag", pa.string()),
    ("material", pa.string()),
    ("tex_params", _TEX_PARAMS),
    ("preserve_3d", pa.bool_()),
])


# ------------------------- Encoding ------------------------- #
def _fragment_row(poly: TilePolygon) -> Dict[str, Any]:
    return {
        "rings": [
            {
                "is_hole": ring.is_hole,
                "points": [{"lon": p.lon, "lat": p.lat, "elev": p.elev} for p in ring.points],
            }
            for ring in poly.rings
        ],
        "layer_tag": poly.layer_tag,
        "material": poly.material,
        "tex_params": asdict(poly.tex_params) if poly.tex_params is not None else None,
        "preserve_3d": bool(poly.preserve_3d),
    }


def _fragment_from_row(row: Dict[str, Any]) -> TilePolygon:
    rings = tuple(
        Ring(
            tuple(GeoPoint(p["lon"], p["lat"], p["elev"]) for p in r["points"]),
            bool(r["is_hole"]),
        )
        for r in row["rings"] or ()
    )
    tp = row["tex_params"]
    return TilePolygon(
        rings=rings,
        layer_tag=row["layer_tag"] or "",
        material=row["material"] or "",
        tex_params=TexParams(**tp) if tp is not None else None,
        preserve_3d=bool(row["preserve_3d"]),
    )


def fragments_to_table(fragments: Sequence[TilePolygon]) -> pa.Table:
    schema = FRAGMENT_SCHEMA.with_metadata({
        b"tile_chopper.version": FORMAT_VERSION.encode("ascii"),
        b"tile_chopper.fragment_count": str(len(fragments)).encode("ascii"),
    })
    return pa.Table.from_pylist([_fragment_row(p) for p in fragments], schema=schema)


# ------------------------- Store ------------------------- #
class TileStore:
    """Reads and writes one bucket's fragment list as a compressed Arrow IPC stream.

    One row per fragment, in insertion order. The schema metadata carries the
    format version and the fragment count so a truncated file is detected on
    read.
    """

    def __init__(self, compression: Optional[str] = "zstd"):
        self.compression = compression

    def write_fragments(self, path: Union[str, Path], fragments: Sequence[TilePolygon]) -> int:
        path = Path(path)
        table = fragments_to_table(fragments)
        options = pa.ipc.IpcWriteOptions(compression=self.compression)
        try:
            with open(path, "wb") as sink:
                with pa.ipc.new_stream(sink, table.schema, options=options) as writer:
                    writer.write_table(table)
        except (OSError, pa.ArrowException) as e:
            raise TileStoreError(f"cannot write {len(fragments)} fragments to {path}: {e}") from e
        logger.debug("Wrote %d fragments to %s", len(fragments), path)
        return table.num_rows

    def read_fragments(self, path: Union[str, Path]) -> List[TilePolygon]:
        path = Path(path)
        try:
            with open(path, "rb") as f:
                table = pa.ipc.open_stream(f).read_all()
        except (OSError, pa.ArrowException) as e:
            raise TileStoreError(f"cannot read fragments from {path}: {e}") from e

        md = table.schema.metadata or {}
        raw_count = md.get(b"tile_chopper.fragment_count")
        if raw_count is not None and int(raw_count) != table.num_rows:
            raise TileStoreError(
                f"{path}: expected {int(raw_count)} fragments, found {table.num_rows}"
            )
        return [_fragment_from_row(row) for row in table.to_pylist()]
