from .aggregation import MessageAggregate, merge
from .router import router

__all__ = [
    "router",
    "merge",
    "MessageAggregate",
]
