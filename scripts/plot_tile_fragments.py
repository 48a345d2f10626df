#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import sys
from pathlib import Path
from typing import List

import folium

from tile_chopper.bucket import Bucket, bounds_of
from tile_chopper.errors import TileStoreError
from tile_chopper.tile_store import TileStore

_COLORS = ["#e41a1c", "#377eb8", "#4daf4a", "#984ea3", "#ff7f00", "#a65628", "#f781bf"]


def gather(root: Path) -> List[Path]:
    # fragment files are named <bucket index>.<sequence>
    out = []
    for p in sorted(root.rglob("*.*")):
        stem, _, seq = p.name.partition(".")
        if p.is_file() and stem.isdigit() and seq.isdigit():
            out.append(p)
    return out


def main():
    if len(sys.argv) < 2:
        print("Usage: python plot_tile_fragments.py <tile store root> [--out OUT.html]")
        sys.exit(1)
    args = sys.argv[1:]
    out_html = "tile_fragments.html"
    if "--out" in args:
        i = args.index("--out")
        if i == len(args) - 1:
            sys.exit("ERROR: --out requires a filename")
        out_html = args[i + 1]
        del args[i:i + 2]

    files = gather(Path(args[0]))
    if not files:
        sys.exit("No fragment files found.")

    store = TileStore()
    colors = {}
    gmin = [float("inf"), float("inf")]
    gmax = [float("-inf"), float("-inf")]
    layers = []

    for p in files:
        bucket = Bucket.from_index(int(p.name.split(".")[0]))
        try:
            fragments = store.read_fragments(p)
        except TileStoreError as e:
            print(f"[{p.name}] ERROR: {e}")
            continue
        lo, hi = bounds_of(bucket)
        gmin[0] = min(gmin[0], lo.lon); gmin[1] = min(gmin[1], lo.lat)
        gmax[0] = max(gmax[0], hi.lon); gmax[1] = max(gmax[1], hi.lat)
        layers.append((p, bucket, lo, hi, fragments))
        print(f"[{p}] bucket={bucket.index} fragments={len(fragments)}")

    m = folium.Map(tiles="CartoDB positron")
    m.fit_bounds([[gmin[1], gmin[0]], [gmax[1], gmax[0]]])

    for p, bucket, lo, hi, fragments in layers:
        folium.Rectangle(
            bounds=[[lo.lat, lo.lon], [hi.lat, hi.lon]],
            fill=False,
            weight=1,
            color="#555555",
            tooltip=f"{bucket.base_path}/{p.name}",
        ).add_to(m)
        for frag in fragments:
            color = colors.setdefault(frag.layer_tag, _COLORS[len(colors) % len(_COLORS)])
            for ring in frag.rings:
                folium.Polygon(
                    locations=[[lat, lon] for lon, lat in ring.coords],
                    color=color,
                    weight=1,
                    fill=not ring.is_hole,
                    fill_opacity=0.4,
                    tooltip=frag.layer_tag,
                ).add_to(m)

    m.save(out_html)
    print(f"\nWrote {out_html} with {len(layers)} buckets.")


if __name__ == "__main__":
    main()
