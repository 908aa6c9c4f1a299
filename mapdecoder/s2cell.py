"""S2 cell geometry and bookkeeping for the cells seen in map responses."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional, Sequence

log = logging.getLogger(__name__)

MAX_LEVEL = 30
REFRESH_SECONDS = 900

_LOOKUP_BITS = 4
_SWAP = 0x01
_INVERT = 0x02
_MAX_SIZE = 1 << MAX_LEVEL
_POS_TO_IJ = ((0, 1, 3, 2), (0, 2, 3, 1), (3, 2, 0, 1), (3, 1, 0, 2))
_POS_TO_ORIENTATION = (_SWAP, 0, 0, _INVERT | _SWAP)


def _build_lookup_tables() -> tuple[list[int], list[int]]:
    size = 1 << (2 * _LOOKUP_BITS + 2)
    lookup_pos = [0] * size
    lookup_ij = [0] * size

    def fill(level: int, i: int, j: int, orig: int, pos: int, orientation: int) -> None:
        if level == _LOOKUP_BITS:
            ij = (i << _LOOKUP_BITS) + j
            lookup_pos[(ij << 2) + orig] = (pos << 2) + orientation
            lookup_ij[(pos << 2) + orig] = (ij << 2) + orientation
            return
        level += 1
        i <<= 1
        j <<= 1
        pos <<= 2
        r = _POS_TO_IJ[orientation]
        for index, step in enumerate(r):
            fill(level, i + (step >> 1), j + (step & 1), orig, pos + index,
                 orientation ^ _POS_TO_ORIENTATION[index])

    for start in (0, _SWAP, _INVERT, _SWAP | _INVERT):
        fill(0, 0, 0, start, 0, start)
    return lookup_pos, lookup_ij


_LOOKUP_POS, _LOOKUP_IJ = _build_lookup_tables()


def _check_cell_id(cell_id: int) -> None:
    if cell_id <= 0 or cell_id >= 1 << 64 or (cell_id >> 61) > 5:
        raise ValueError(f"invalid cell id {cell_id}")


def _lsb(cell_id: int) -> int:
    return cell_id & -cell_id


def cell_level(cell_id: int) -> int:
    """Return the level (0 to 30) of a cell id."""
    _check_cell_id(cell_id)
    trailing = (_lsb(cell_id).bit_length() - 1)
    return MAX_LEVEL - (trailing >> 1)


def _parent(cell_id: int, level: int) -> int:
    lsb = 1 << (2 * (MAX_LEVEL - level))
    return (cell_id & -lsb) | lsb


def _face_ij(cell_id: int) -> tuple[int, int, int]:
    face = cell_id >> 61
    orientation = face & _SWAP
    i = j = 0
    nbits = MAX_LEVEL - 7 * _LOOKUP_BITS
    mask = (1 << _LOOKUP_BITS) - 1
    for k in range(7, -1, -1):
        orientation += ((cell_id >> (k * 2 * _LOOKUP_BITS + 1)) & ((1 << (2 * nbits)) - 1)) << 2
        orientation = _LOOKUP_IJ[orientation]
        i += (orientation >> (_LOOKUP_BITS + 2)) << (k * _LOOKUP_BITS)
        j += ((orientation >> 2) & mask) << (k * _LOOKUP_BITS)
        orientation &= _SWAP | _INVERT
        nbits = _LOOKUP_BITS
    return face, i, j


def _cell_id_from_face_ij(face: int, i: int, j: int) -> int:
    n = face << 60
    bits = face & _SWAP
    mask = (1 << _LOOKUP_BITS) - 1
    for k in range(7, -1, -1):
        bits += ((i >> (k * _LOOKUP_BITS)) & mask) << (_LOOKUP_BITS + 2)
        bits += ((j >> (k * _LOOKUP_BITS)) & mask) << 2
        bits = _LOOKUP_POS[bits]
        n |= (bits >> 2) << (k * 2 * _LOOKUP_BITS)
        bits &= _SWAP | _INVERT
    return n * 2 + 1


def _st_to_uv(s: float) -> float:
    if s >= 0.5:
        return (4 * s * s - 1) / 3
    return (1 - 4 * (1 - s) * (1 - s)) / 3


def _uv_to_st(u: float) -> float:
    if u >= 0:
        return 0.5 * math.sqrt(1 + 3 * u)
    return 1 - 0.5 * math.sqrt(1 - 3 * u)


def _st_to_ij(s: float) -> int:
    return max(0, min(_MAX_SIZE - 1, math.floor(_MAX_SIZE * s)))


def _face_uv_to_xyz(face: int, u: float, v: float) -> tuple[float, float, float]:
    return (
        (1.0, u, v),
        (-u, 1.0, v),
        (-u, -v, 1.0),
        (-1.0, -v, -u),
        (v, -1.0, -u),
        (v, u, -1.0),
    )[face]


def _xyz_to_face_uv(x: float, y: float, z: float) -> tuple[int, float, float]:
    ax, ay, az = abs(x), abs(y), abs(z)
    if ax > ay:
        face = 0 if ax > az else 2
    else:
        face = 1 if ay > az else 2
    if (x, y, z)[face] < 0:
        face += 3
    u, v = (
        lambda: (y / x, z / x),
        lambda: (-x / y, z / y),
        lambda: (-x / z, -y / z),
        lambda: (z / x, y / x),
        lambda: (z / y, -x / y),
        lambda: (-y / z, -x / z),
    )[face]()
    return face, u, v


def _normalize(p: tuple[float, float, float]) -> tuple[float, float, float]:
    norm = math.sqrt(p[0] ** 2 + p[1] ** 2 + p[2] ** 2)
    if norm == 0:
        return p
    return p[0] / norm, p[1] / norm, p[2] / norm


def _point_from_lat_lng(lat: float, lon: float) -> tuple[float, float, float]:
    phi, theta = math.radians(lat), math.radians(lon)
    cos_phi = math.cos(phi)
    return cos_phi * math.cos(theta), cos_phi * math.sin(theta), math.sin(phi)


def _lat_rad(p: tuple[float, float, float]) -> float:
    return math.atan2(p[2], math.sqrt(p[0] ** 2 + p[1] ** 2))


def _lng_rad(p: tuple[float, float, float]) -> float:
    return math.atan2(p[1], p[0])


def _angle_between(a: tuple[float, float, float], b: tuple[float, float, float]) -> float:
    chord2 = sum((x - y) ** 2 for x, y in zip(a, b))
    return 2 * math.asin(min(1.0, 0.5 * math.sqrt(chord2)))


def cell_center(cell_id: int) -> tuple[float, float]:
    """Return the centre (lat, lon) in degrees of the rectangle bounding the cell's cap."""
    level = cell_level(cell_id)
    face, i, j = _face_ij(cell_id)
    size = 1 << (MAX_LEVEL - level)
    i_lo, j_lo = i & -size, j & -size
    u_lo, u_hi = _st_to_uv(i_lo / _MAX_SIZE), _st_to_uv((i_lo + size) / _MAX_SIZE)
    v_lo, v_hi = _st_to_uv(j_lo / _MAX_SIZE), _st_to_uv((j_lo + size) / _MAX_SIZE)

    center = _normalize(_face_uv_to_xyz(face, 0.5 * (u_lo + u_hi), 0.5 * (v_lo + v_hi)))
    radius = 0.0
    for u, v in ((u_lo, v_lo), (u_hi, v_lo), (u_hi, v_hi), (u_lo, v_hi)):
        vertex = _normalize(_face_uv_to_xyz(face, u, v))
        radius = max(radius, _angle_between(center, vertex))

    center_lat, center_lng = _lat_rad(center), _lng_rad(center)
    lat_lo, lat_hi = center_lat - radius, center_lat + radius
    lng_lo, lng_hi = -math.pi, math.pi
    all_longitudes = False
    if lat_lo <= -math.pi / 2:
        lat_lo = -math.pi / 2
        all_longitudes = True
    if lat_hi >= math.pi / 2:
        lat_hi = math.pi / 2
        all_longitudes = True
    if not all_longitudes:
        sin_a = math.sin(radius)
        sin_c = math.cos(center_lat)
        if sin_a <= sin_c:
            angle_a = math.asin(sin_a / sin_c)
            lng_lo = math.remainder(center_lng - angle_a, 2 * math.pi)
            lng_hi = math.remainder(center_lng + angle_a, 2 * math.pi)

    lng_center = 0.5 * (lng_lo + lng_hi)
    if lng_lo > lng_hi:
        lng_center = lng_center + math.pi if lng_center <= 0 else lng_center - math.pi
    return math.degrees(0.5 * (lat_lo + lat_hi)), math.degrees(lng_center)


def cell_id_from_lat_lng(lat: float, lon: float, level: int = MAX_LEVEL) -> int:
    """Return the id of the cell at ``level`` that contains the given point."""
    if not 0 <= level <= MAX_LEVEL:
        raise ValueError(f"cell level must be between 0 and {MAX_LEVEL}, got {level}")
    face, u, v = _xyz_to_face_uv(*_point_from_lat_lng(lat, lon))
    leaf = _cell_id_from_face_ij(face, _st_to_ij(_uv_to_st(u)), _st_to_ij(_uv_to_st(v)))
    return _parent(leaf, level)


def midpoint(lat1: float, lon1: float, lat2: float, lon2: float) -> tuple[float, float]:
    """Return the spherical midpoint (lat, lon) of two points, in degrees."""
    a = _point_from_lat_lng(lat1, lon1)
    b = _point_from_lat_lng(lat2, lon2)
    summed = (a[0] + b[0], a[1] + b[1], a[2] + b[2])
    return math.degrees(_lat_rad(summed)), math.degrees(_lng_rad(summed))


@dataclass
class S2Cell:
    """A map cell as recorded in storage."""

    id: int
    latitude: float
    longitude: float
    level: Optional[int]
    updated: int = 0


class S2CellStore:
    """Keeps track of seen cells and writes those not refreshed recently."""

    def __init__(self, writer: Optional[Callable[[Sequence[S2Cell]], None]] = None) -> None:
        self.writer = writer
        self._cache: dict[int, S2Cell] = {}

    def cells_to_save(self, cell_ids: Iterable[int], now: int) -> list[S2Cell]:
        """Write the cells that need refreshing and return them.

        Cells refreshed within the last 15 minutes are skipped. If the writer
        fails, nothing is cached and an empty list is returned.
        """
        output: list[S2Cell] = []
        for cell_id in cell_ids:
            cached = self._cache.get(cell_id)
            if cached is not None:
                if cached.updated > now - REFRESH_SECONDS:
                    continue
                cell = replace(cached, updated=now)
            else:
                lat, lon = cell_center(cell_id)
                cell = S2Cell(cell_id, lat, lon, cell_level(cell_id), now)
            output.append(cell)

        if not output:
            return []

        if self.writer is not None:
            try:
                self.writer(output)
            except Exception as exc:  # storage failures are logged, not fatal
                log.error("saving s2 cells failed: %s", exc)
                return []

        for cell in output:
            self._cache[cell.id] = cell
        return output