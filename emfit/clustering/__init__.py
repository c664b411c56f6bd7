from .kmeans import KMeans, RefinedStart

__all__ = ["KMeans", "RefinedStart"]
