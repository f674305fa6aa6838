"""Reproducible pseudo-random values derived from string keys.

The hash is 32-bit FNV-1a over the UTF-8 bytes of the key followed by the
MurmurHash3 finalizer. FNV-1a alone leaves the low bits weakly mixed when only
the last character changes (e.g. zoom bucket 4 -> 2); the finalizer spreads
every input bit across the whole word, and the low bits are the ones
`angle` and `radius_in_range` consume.

All arithmetic is masked to 32 bits so the result is identical on every
platform and interpreter.
"""

from __future__ import annotations

import math

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193

ANGLE_STEPS = 36000


def _fmix32(value: int) -> int:
	value ^= value >> 16
	value = (value * 0x85EBCA6B) & _MASK32
	value ^= value >> 13
	value = (value * 0xC2B2AE35) & _MASK32
	value ^= value >> 16
	return value


def seed(key: str) -> int:
	"""Map `key` to an unsigned 32-bit integer."""
	value = _FNV_OFFSET
	for byte in key.encode("utf-8"):
		value ^= byte
		value = (value * _FNV_PRIME) & _MASK32
	return _fmix32(value)


def angle(seed_value: int) -> float:
	"""Bearing in radians in [0, 2π), quantised to hundredths of a degree."""
	return (seed_value % ANGLE_STEPS) / ANGLE_STEPS * 2 * math.pi


def radius_in_range(seed_value: int, min_m: int, max_m: int) -> int:
	"""Whole meters in the inclusive range [min_m, max_m]."""
	if max_m < min_m:
		raise ValueError("max_m must be >= min_m")
	return seed_value % (max_m - min_m + 1) + min_m
