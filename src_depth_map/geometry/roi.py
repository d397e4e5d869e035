"""
Region-of-interest geometry for tiled depth map computation.

All bounds are integers in full resolution image pixel coordinates,
``begin`` inclusive and ``end`` exclusive.
"""

from dataclasses import dataclass


def divide_round_up(a: int, b: int) -> int:
    """Integer division rounded towards positive infinity."""
    if b <= 0:
        raise ValueError(f"Divisor must be positive, got {b}")
    return (a + b - 1) // b


@dataclass(frozen=True)
class Range:
    """Half-open integer interval [begin, end)."""

    begin: int = 0
    end: int = 0

    def __post_init__(self):
        if self.begin > self.end:
            raise ValueError(f"Invalid range: begin ({self.begin}) > end ({self.end})")

    @property
    def size(self) -> int:
        return self.end - self.begin

    def is_empty(self) -> bool:
        return self.size == 0

    def contains(self, value: int) -> bool:
        return self.begin <= value < self.end


@dataclass(frozen=True)
class ROI:
    """Rectangular region of interest."""

    x: Range = Range()
    y: Range = Range()

    @classmethod
    def from_bounds(cls, x_begin: int, x_end: int, y_begin: int, y_end: int) -> "ROI":
        return cls(Range(int(x_begin), int(x_end)), Range(int(y_begin), int(y_end)))

    @classmethod
    def from_size(cls, width: int, height: int) -> "ROI":
        """Full image ROI."""
        return cls.from_bounds(0, width, 0, height)

    @property
    def width(self) -> int:
        return self.x.size

    @property
    def height(self) -> int:
        return self.y.size

    @property
    def shape(self):
        """Array shape (rows, cols) of a buffer covering this ROI."""
        return (self.height, self.width)

    def is_empty(self) -> bool:
        return self.x.is_empty() or self.y.is_empty()

    def contains(self, x: int, y: int) -> bool:
        return self.x.contains(x) and self.y.contains(y)

    def slices(self):
        """Numpy (row, col) slices selecting this ROI in a full buffer."""
        return (slice(self.y.begin, self.y.end), slice(self.x.begin, self.x.end))

    def __str__(self) -> str:
        return f"ROI(x=[{self.x.begin}, {self.x.end}), y=[{self.y.begin}, {self.y.end}))"


def intersect(a: ROI, b: ROI) -> ROI:
    """
    Intersection of two ROIs.

    Disjoint inputs give an empty ROI anchored at the clamped begin, never
    a negative size.
    """
    x_begin = max(a.x.begin, b.x.begin)
    y_begin = max(a.y.begin, b.y.begin)
    x_end = max(x_begin, min(a.x.end, b.x.end))
    y_end = max(y_begin, min(a.y.end, b.y.end))
    return ROI.from_bounds(x_begin, x_end, y_begin, y_end)


def downscale_range(rng: Range, factor: int) -> Range:
    return Range(rng.begin // factor, divide_round_up(rng.end, factor))


def downscale_roi(roi: ROI, factor: int) -> ROI:
    """
    ROI expressed at ``1 / factor`` resolution.

    The begin bound is floored and the end bound rounded up so that the
    downscaled ROI always covers the original one.
    """
    if factor <= 0:
        raise ValueError(f"Downscale factor must be positive, got {factor}")
    return ROI(downscale_range(roi.x, factor), downscale_range(roi.y, factor))


def upscale_roi(roi: ROI, factor: int) -> ROI:
    if factor <= 0:
        raise ValueError(f"Upscale factor must be positive, got {factor}")
    return ROI.from_bounds(roi.x.begin * factor, roi.x.end * factor,
                           roi.y.begin * factor, roi.y.end * factor)
