from __future__ import annotations
from typing import Literal

KMeansInitStrategy = Literal["random", "kmeans++"]
KMeansInitStrategy.__doc__ = """
Strategy for initializing KMeans centroids.

- **random**: Centroids are sampled uniformly from the data.
- **kmeans++**: The first centroid is sampled uniformly from the data. Subsequently, a few
  candidates are sampled with probability proportional to ``D(x)^2`` where ``D(x)`` is the
  distance of datapoint ``x`` to the closest centroid chosen so far. The candidate which reduces
  the inertia the most becomes the next centroid.
"""
