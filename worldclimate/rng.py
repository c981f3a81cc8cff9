"""Deterministic splittable RNG streams."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib

import numpy as np


_DEFAULT_NAMESPACE = "worldclimate-v1"
# FWHM / 2 = sigma * sqrt(2 ln 2)
_HWHM_PER_SIGMA = 1.177410023


def _normalize_seed(seed: int) -> int:
    return int(seed) & ((1 << 64) - 1)


def derive_seed(parent_seed: int, key: str, *, namespace: str = _DEFAULT_NAMESPACE) -> int:
    """Derive a deterministic child seed from a parent seed and stage label."""

    payload = f"{namespace}:{_normalize_seed(parent_seed)}:{key}".encode("utf-8")
    digest = hashlib.blake2b(payload, digest_size=8, person=b"wcfork001").digest()
    return int.from_bytes(digest, byteorder="big", signed=False)


@dataclass(frozen=True)
class RngStream:
    """Immutable RNG stream forked by stage name, one generator per stage."""

    seed: int
    namespace: str = _DEFAULT_NAMESPACE

    def fork(self, key: str) -> "RngStream":
        if not key:
            raise ValueError("fork key must be non-empty")
        return RngStream(derive_seed(self.seed, key, namespace=self.namespace), self.namespace)

    def generator(self) -> np.random.Generator:
        return np.random.Generator(np.random.PCG64(np.uint64(_normalize_seed(self.seed))))


def gaussian_hwhm(gen: np.random.Generator, mean: float, hwhm: float) -> float:
    """Sample a normal variate described by its half width at half maximum."""

    if hwhm < 0.0:
        raise ValueError("hwhm must be >= 0")
    if hwhm == 0.0:
        return float(mean)
    return float(gen.normal(loc=mean, scale=hwhm / _HWHM_PER_SIGMA))
