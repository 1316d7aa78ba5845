"""Vector math shared by the store and its indexes."""

import hashlib

import numpy as np


def l2_normalize(vector) -> np.ndarray:
    """Return a float32 unit vector; zero vectors are returned unchanged."""
    arr = np.asarray(vector, dtype=np.float32)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr
    return (arr / norm).astype(np.float32)


def l2_to_similarity(distance: float) -> float:
    """
    Convert the L2 distance between two unit vectors to cosine similarity.

    For unit vectors d^2 = 2(1 - cos), so cos = 1 - d^2 / 2.
    """
    return 1.0 - (distance * distance) / 2.0


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError("Vector dimensions don't match")
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def content_hash(text: str) -> str:
    """Exact-match hash used to drop duplicate chunk text from results."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
