from .accumulator import PolygonAccumulator
from .bucket import Bucket, bounds_of, bucket_for, bucket_span, diff, offset
from .chopper import Chopper
from .config import ChopConfig, SliverConfig
from .errors import GeometrySpanError, TileChopperError, TileIndexError, TileStoreError
from .polygon import GeoPoint, Ring, TexParams, TilePolygon
from .tile_index import PersistentTileIndex
from .tile_store import TileStore

__all__ = [
    "Bucket",
    "bounds_of",
    "bucket_for",
    "bucket_span",
    "diff",
    "offset",
    "ChopConfig",
    "Chopper",
    "GeoPoint",
    "GeometrySpanError",
    "PersistentTileIndex",
    "PolygonAccumulator",
    "Ring",
    "SliverConfig",
    "TexParams",
    "TileChopperError",
    "TileIndexError",
    "TilePolygon",
    "TileStore",
    "TileStoreError",
]
