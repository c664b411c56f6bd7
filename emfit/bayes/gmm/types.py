from __future__ import annotations
from typing import Literal

GaussianMixtureInitStrategy = Literal["kmeans", "refined"]
GaussianMixtureInitStrategy.__doc__ = """
Strategy for initializing the parameters of a Gaussian mixture model.

- **kmeans**: Runs K-Means via :class:`emfit.clustering.KMeans` on the full data and uses the
  centroids as the initial component means.
- **refined**: Computes the initial component means via :class:`emfit.clustering.RefinedStart`,
  i.e. by clustering the K-Means solutions of many small subsamples of the data.

In both cases, covariances are computed from the one-hot cluster assignments and all components
are weighted equally.
"""
