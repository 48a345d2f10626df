from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class SliverConfig:
    min_ratio: float = 1e-7        # area / perimeter, degrees
    min_width: float = 1e-6        # narrowest feature a ring may have, degrees
    contour_slack: int = 0         # contour-count change still accepted as a clean merge


@dataclass
class ChopConfig:
    max_dx: int = 2880             # bucket columns a single polygon may span
    max_dy: int = 1440             # bucket rows a single polygon may span
    index_file: str = "chop.idx"
    lock_name: str = "tile_chopper_index"
    compression: Optional[str] = "zstd"
    max_workers: int = 8
    sliver: SliverConfig = field(default_factory=SliverConfig)
