"""Perceptual image hash similarity."""

from __future__ import annotations

from rapidfuzz.distance import Hamming


def image_similarity(hash_a: str, hash_b: str) -> float:
    """Normalized Hamming similarity of two hex-encoded perceptual hashes.

    Hashes of different lengths are compared with the shorter one padded.
    """
    return Hamming.normalized_similarity(hash_a.lower(), hash_b.lower())
