from __future__ import annotations
import pytest
from shapely.geometry import box

from tile_chopper.chopper import Chopper
from tile_chopper.polygon import TilePolygon


def make_box(minx, miny, maxx, maxy, layer_tag="pavement", **meta) -> TilePolygon:
    return TilePolygon.from_shapely(box(minx, miny, maxx, maxy), layer_tag=layer_tag, **meta)


@pytest.fixture
def square():
    return make_box


@pytest.fixture
def tile_root(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    return root


@pytest.fixture
def chopper(tile_root):
    return Chopper(tile_root)
