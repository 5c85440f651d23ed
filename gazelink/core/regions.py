"""
Selectable screen regions for dwell hit testing.

Regions are axis-aligned rectangles in receiver screen coordinates
(top-left origin). Children use the same absolute coordinates as their
parent. Later siblings are on top of earlier ones.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Hashable, Iterable, List, Optional

from gazelink.vision.geometry import GazePoint
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Region:
    """A rectangle that may be selected by dwelling on it."""

    region_id: Hashable
    x: float
    y: float
    width: float
    height: float
    selectable: bool = True
    children: List["Region"] = field(default_factory=list)

    def contains(self, point: GazePoint) -> bool:
        return (
            self.x <= point.x <= self.x + self.width
            and self.y <= point.y <= self.y + self.height
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Region":
        """Create from dictionary (``id``, ``x``, ``y``, ``width``, ``height``)."""
        width, height = float(data["width"]), float(data["height"])
        if width < 0 or height < 0:
            raise ValueError(f"Region {data.get('id')!r} has negative size")

        return cls(
            region_id=data["id"],
            x=float(data["x"]),
            y=float(data["y"]),
            width=width,
            height=height,
            selectable=bool(data.get("selectable", True)),
            children=[cls.from_dict(child) for child in data.get("children", [])],
        )


class RegionRegistry:
    """
    Region tree with a topmost, most specific hit test.

    Hit testing walks siblings from the top of the stack down and prefers
    a selectable descendant over its containing region. Non-selectable
    regions only group their children.
    """

    def __init__(self, regions: Optional[Iterable[Region]] = None):
        self._regions: List[Region] = list(regions or [])

    def add(self, region: Region):
        """Add a top-level region above the existing ones."""
        self._regions.append(region)

    def remove(self, region_id: Hashable) -> bool:
        """Remove a top-level region."""
        for i, region in enumerate(self._regions):
            if region.region_id == region_id:
                del self._regions[i]
                return True
        return False

    def clear(self):
        self._regions.clear()

    def hit_test(self, point: GazePoint) -> Optional[Hashable]:
        """
        Find the selectable region under a point.

        Returns:
            Region id, or None if no selectable region contains the point
        """
        return self._search(self._regions, point)

    def _search(self, regions: List[Region], point: GazePoint) -> Optional[Hashable]:
        for region in reversed(regions):
            if not region.contains(point):
                continue

            nested = self._search(region.children, point)
            if nested is not None:
                return nested

            if region.selectable:
                return region.region_id

        return None

    def __len__(self) -> int:
        return len(self._regions)

    @classmethod
    def from_json(cls, path: Path) -> "RegionRegistry":
        """
        Load regions from a JSON file holding a list of region objects.

        Raises:
            ValueError: If the file is not a valid region list
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid regions file {path}: {e}") from e

        if not isinstance(data, list):
            raise ValueError(f"Regions file {path} must contain a list")

        try:
            regions = [Region.from_dict(item) for item in data]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid region in {path}: {e}") from e

        logger.info(f"Loaded {len(regions)} regions from {path}")
        return cls(regions)
