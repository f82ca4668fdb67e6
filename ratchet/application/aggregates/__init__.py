from .repository import AggregateRepository, RepoHooks, RepositorySettings
from .serializer import AggregateSerializer, ModelSerializer

__all__ = [
    "AggregateRepository",
    "AggregateSerializer",
    "ModelSerializer",
    "RepoHooks",
    "RepositorySettings",
]
