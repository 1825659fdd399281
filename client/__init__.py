from .client import ClusterClient

__all__ = ['ClusterClient']
