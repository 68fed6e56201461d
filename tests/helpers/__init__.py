"""Test helpers package"""

from .chunks import (
    NOW,
    make_candidate,
    make_chunk,
    work_corpus,
)


__all__ = [
    "NOW",
    "make_candidate",
    "make_chunk",
    "work_corpus",
]
