import logging
from pathlib import Path

import pytest
from shapely.geometry import box

from tile_chopper.accumulator import PolygonAccumulator
from tile_chopper.chopper import Chopper
from tile_chopper.config import SliverConfig
from tile_chopper.polygon import GeoPoint, Ring, TilePolygon


def test_add_does_not_modify_polygon(square):
    acc = PolygonAccumulator()
    a = square(0, 0, 1, 1)
    acc.add(a)
    assert a == square(0, 0, 1, 1)
    assert acc.geometry.area == pytest.approx(1.0)


def test_diff_without_overlap_returns_input(square):
    acc = PolygonAccumulator()
    acc.add(square(0, 0, 1, 1))
    far = square(5, 5, 6, 6)
    assert acc.diff(far) is far


def test_diff_and_add_partitions_overlapping_layers(square):
    acc = PolygonAccumulator()
    a = square(0, 0, 2, 2, layer_tag="runway")
    b = square(1, 1, 3, 3, layer_tag="taxiway")

    a2 = acc.diff_and_add(a)
    b2 = acc.diff_and_add(b)

    assert a2.area == pytest.approx(4.0)
    assert b2.area == pytest.approx(3.0)
    assert b2.layer_tag == "taxiway"
    ga, gb = a2.to_shapely(), b2.to_shapely()
    assert ga.intersection(gb).area == pytest.approx(0.0, abs=1e-12)
    assert ga.union(gb).area == pytest.approx(a.to_shapely().union(b.to_shapely()).area)


def test_diff_and_add_registers_original_geometry(square):
    acc = PolygonAccumulator()
    acc.diff_and_add(square(0, 0, 2, 2))
    acc.diff_and_add(square(1, 0, 3, 2))   # only 1..3 survives, but 0..3 is registered
    c = acc.diff_and_add(square(0, 0, 4, 2))
    assert c.area == pytest.approx(2.0)
    assert c.bounds() == (3.0, 0.0, 4.0, 2.0)


def test_fully_covered_polygon_becomes_empty(square):
    acc = PolygonAccumulator()
    acc.add(square(0, 0, 4, 4))
    assert acc.diff(square(1, 1, 2, 2)).is_empty


def test_clear(square):
    acc = PolygonAccumulator()
    acc.add(square(0, 0, 1, 1))
    acc.clear()
    assert acc.is_empty
    inner = square(0.2, 0.2, 0.4, 0.4)
    assert acc.diff(inner) is inner


def test_find_slivers_by_ratio():
    acc = PolygonAccumulator()
    poly = TilePolygon(rings=(
        Ring.from_coords(box(0, 0, 1, 1).exterior.coords),
        Ring.from_coords(box(2, 0, 2 + 1e-9, 1).exterior.coords),
    ))
    slivers = acc.find_slivers(poly)
    assert len(slivers) == 1
    assert slivers[0].coords[0][0] >= 2.0


def test_find_slivers_by_width():
    # passes the area/perimeter test but is narrower than min_width
    acc = PolygonAccumulator(SliverConfig(min_ratio=0.0, min_width=1e-6))
    thin = Ring.from_coords(box(0, 0, 1, 5e-7).exterior.coords)
    fat = Ring.from_coords(box(0, 1, 1, 2).exterior.coords)
    assert acc.find_slivers(TilePolygon(rings=(thin, fat))) == [thin]


def _shell_with_thin_hole_and_sliver():
    return TilePolygon(
        rings=(
            Ring.from_coords(box(0, 0, 1, 1).exterior.coords),
            Ring.from_coords(box(0.5, 0.2, 0.5 + 1e-9, 0.8).exterior.coords, is_hole=True),
            Ring.from_coords(box(3, 0, 3 + 1e-9, 1).exterior.coords),
        ),
        layer_tag="base",
    )


def test_find_slivers_reports_thin_holes():
    slivers = PolygonAccumulator().find_slivers(_shell_with_thin_hole_and_sliver())
    assert sorted(r.is_hole for r in slivers) == [False, True]


def test_remove_slivers_keeps_thin_holes_open():
    acc = PolygonAccumulator()
    poly = _shell_with_thin_hole_and_sliver()
    cleaned, slivers = acc.remove_slivers(poly)
    assert [r.is_hole for r in cleaned.rings] == [False, True]
    assert cleaned.layer_tag == "base"
    assert cleaned.area < 1.0
    assert len(slivers) == 1 and not slivers[0].is_hole


def test_thin_gap_left_by_diff_is_not_refilled(square):
    acc = PolygonAccumulator()
    acc.add(square(0.5, 0.3, 0.5 + 1e-9, 0.7, layer_tag="fence"))
    grass = acc.diff_and_add(square(0.0, 0.2, 1.0, 0.8, layer_tag="grass"))
    cleaned, _ = acc.remove_slivers(grass)
    fence = box(0.5, 0.3, 0.5 + 1e-9, 0.7)
    assert [r.is_hole for r in cleaned.rings] == [False, True]
    assert cleaned.to_shapely().intersection(fence).area == pytest.approx(0.0, abs=1e-18)


def test_merge_ignores_hole_rings():
    acc = PolygonAccumulator()
    cand = TilePolygon.from_shapely(box(0, 0, 1, 1))
    hole = Ring.from_coords(box(0.5, 0.2, 0.5 + 1e-9, 0.8).exterior.coords, is_hole=True)
    assert acc.merge_slivers([hole], [cand]) == [cand]


def test_diff_keeps_elevations_of_3d_polygons():
    acc = PolygonAccumulator()
    acc.add(TilePolygon.from_shapely(box(0, 0, 0.1, 0.1)))
    lake = TilePolygon(
        rings=(Ring((
            GeoPoint(0.0, 0.0, 100.0),
            GeoPoint(0.2, 0.0, 110.0),
            GeoPoint(0.2, 0.1, 120.0),
            GeoPoint(0.0, 0.1, 130.0),
        )),),
        layer_tag="lake",
        preserve_3d=True,
    )
    rest = acc.diff_and_add(lake)
    assert rest.area == pytest.approx(0.01)
    elevs = {p.elev for r in rest.rings for p in r.points}
    assert None not in elevs
    assert elevs <= {100.0, 110.0, 120.0, 130.0}

    chopper = Chopper(Path("unused"))
    chopper.add(rest)
    frag_elevs = {
        p.elev for b in chopper.buckets() for f in chopper.fragments(b) for r in f.rings for p in r.points
    }
    assert frag_elevs and None not in frag_elevs


def test_merged_sliver_keeps_elevations():
    acc = PolygonAccumulator()
    cand = TilePolygon(
        rings=(Ring((
            GeoPoint(0.0, 0.0, 5.0),
            GeoPoint(1.0, 0.0, 6.0),
            GeoPoint(1.0, 1.0, 7.0),
            GeoPoint(0.0, 1.0, 8.0),
        )),),
        preserve_3d=True,
    )
    sliver = Ring.from_coords([(1, 0, 9.0), (1.000001, 0, 9.0), (1.000001, 1, 9.0), (1, 1, 9.0)])
    (merged,) = acc.merge_slivers([sliver], [cand])
    assert merged.area == pytest.approx(1.000001)
    assert {p.elev for r in merged.rings for p in r.points} <= {5.0, 6.0, 7.0, 8.0, 9.0}
    assert None not in {p.elev for r in merged.rings for p in r.points}


def test_remove_slivers_keeps_clean_polygon(square):
    acc = PolygonAccumulator()
    poly = square(0, 0, 1, 1)
    cleaned, slivers = acc.remove_slivers(poly)
    assert cleaned is poly
    assert slivers == []


def test_merge_slivers_picks_first_clean_candidate(square):
    acc = PolygonAccumulator()
    far = square(5, 5, 6, 6, layer_tag="far")
    near = square(0, 0, 1, 1, layer_tag="near")
    sliver = Ring.from_coords(box(1, 0, 1.000001, 1).exterior.coords)

    out = acc.merge_slivers([sliver], [far, near])

    assert out[0] is far
    assert out[1].layer_tag == "near"
    assert out[1].contour_count == 1
    assert out[1].bounds()[2] == pytest.approx(1.000001)
    assert out[1].area == pytest.approx(1.000001)


def test_merge_slivers_accepts_polygon_slivers(square):
    acc = PolygonAccumulator()
    near = square(0, 0, 1, 1)
    sliver = square(1, 0, 1.000001, 1)
    out = acc.merge_slivers([sliver], [near])
    assert out[0].area == pytest.approx(1.000001)


def test_unmerged_sliver_is_dropped_with_warning(square, caplog):
    acc = PolygonAccumulator()
    cands = [square(0, 0, 1, 1), square(2, 2, 3, 3)]
    sliver = Ring.from_coords(box(10, 10, 10.000001, 11).exterior.coords)

    with caplog.at_level(logging.WARNING, logger="tile_chopper.accumulator"):
        out = acc.merge_slivers([sliver], cands)

    assert out == cands
    assert any("dropped" in rec.getMessage() for rec in caplog.records)


def test_contour_slack_allows_looser_merges(square):
    sliver = Ring.from_coords(box(10, 10, 10.000001, 11).exterior.coords)
    cand = square(0, 0, 1, 1)
    out = PolygonAccumulator(SliverConfig(contour_slack=1)).merge_slivers([sliver], [cand])
    assert out[0].contour_count == 2
