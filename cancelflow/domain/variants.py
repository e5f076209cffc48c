from __future__ import annotations

import secrets
from collections.abc import Callable
from enum import StrEnum


class DownsellVariant(StrEnum):
    A = "A"
    B = "B"


def draw_variant(randbits: Callable[[int], int] = secrets.randbits) -> DownsellVariant:
    """Pick a downsell arm from a single uniformly random bit."""
    bit = randbits(1) & 1
    return DownsellVariant.A if bit == 0 else DownsellVariant.B
