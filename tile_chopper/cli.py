from __future__ import annotations
import argparse
import logging
import sys
from time import perf_counter
from typing import List, Optional

from .accumulator import PolygonAccumulator
from .chopper import Chopper
from .config import ChopConfig, SliverConfig
from .datasource import build_source
from .errors import TileChopperError
from .polygon import Ring, TilePolygon

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(relativeCreated).0fms] %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _parse_compression(s: str) -> Optional[str]:
    s = (s or "").strip().lower()
    if s in ("", "none", "uncompressed"):
        return None
    if s in ("zstd", "lz4"):
        return s
    raise argparse.ArgumentTypeError(f"Unsupported --compression: {s}")


def _deoverlap(
    polys: List[TilePolygon],
    accumulator: PolygonAccumulator,
    merge_slivers: bool,
) -> List[TilePolygon]:
    out = [accumulator.diff_and_add(p) for p in polys]
    if not merge_slivers:
        return out

    cleaned: List[TilePolygon] = []
    slivers: List[Ring] = []
    for p in out:
        kept, found = accumulator.remove_slivers(p)
        cleaned.append(kept)
        slivers.extend(found)
    if slivers:
        logger.info("Found %d slivers", len(slivers))
        cleaned = accumulator.merge_slivers(slivers, cleaned)
    return cleaned


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        description="GeoJSON/GeoParquet polygons → bucketed, non-overlapping fragment tiles."
    )
    # Source
    ap.add_argument("--input", required=True, action="append",
                    help="Input GeoJSON/GeoJSONL/GeoParquet. Repeat in priority order (highest first).")
    ap.add_argument("--layer-prop", default="layer",
                    help="Feature property holding the layer tag (default: layer).")
    ap.add_argument("--layer", default=None,
                    help="Layer tag for features without one (default: input file stem).")
    ap.add_argument("--preserve-3d", action="store_true",
                    help="Keep input elevations on the output fragments.")

    # Output / run
    ap.add_argument("--outdir", required=True, help="Root directory of the tile store.")
    ap.add_argument("--compression", type=_parse_compression, default="zstd",
                    help="Fragment file compression: zstd|lz4|none (default: zstd).")
    ap.add_argument("--workers", type=int, default=8,
                    help="Threads chopping polygons concurrently.")

    # Overlap / slivers
    ap.add_argument("--no-overlap", action="store_true",
                    help="Subtract everything emitted from earlier inputs before chopping.")
    ap.add_argument("--merge-slivers", action="store_true",
                    help="With --no-overlap, fold thin leftovers into neighbouring polygons.")
    ap.add_argument("--sliver-ratio", type=float, default=SliverConfig.min_ratio,
                    help="Area/perimeter ratio (degrees) below which a ring is a sliver.")
    ap.add_argument("--sliver-width", type=float, default=SliverConfig.min_width,
                    help="Minimum feature width (degrees) below which a ring is a sliver.")
    ap.add_argument("--sliver-slack", type=int, default=SliverConfig.contour_slack,
                    help="Contour-count change still accepted when merging a sliver.")

    ap.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")

    args = ap.parse_args(argv)
    logging.getLogger().setLevel(args.log_level.upper())

    config = ChopConfig(
        compression=args.compression,
        max_workers=args.workers,
        sliver=SliverConfig(
            min_ratio=args.sliver_ratio,
            min_width=args.sliver_width,
            contour_slack=args.sliver_slack,
        ),
    )
    chopper = Chopper(args.outdir, config=config)
    accumulator = PolygonAccumulator(config.sliver) if args.no_overlap else None

    start = perf_counter()
    try:
        for path in args.input:
            source = build_source(
                path,
                layer_prop=args.layer_prop,
                default_layer=args.layer,
                preserve_3d=args.preserve_3d,
            )
            polys = list(source.iter_polygons())
            logger.info("Read %d polygons from %s", len(polys), path)
            if accumulator is not None:
                polys = _deoverlap(polys, accumulator, args.merge_slivers)
            chopper.add_many(polys, max_workers=config.max_workers)

        written = chopper.save()
    except TileChopperError as e:
        logger.error("Build aborted: %s", e)
        return 1

    logger.info(
        "Chopping complete: %d files under %s in %.3f seconds",
        len(written), args.outdir, perf_counter() - start,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
