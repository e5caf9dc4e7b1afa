"""Route search and scheduling."""

from .genetic import GeneticParameters, GeneticRouteSearch, SearchResult, route_cost
from .optimizer import RouteOptimizer, improvement_score, route_sequences
from .scheduler import OptimizationScheduler

__all__ = [
    "GeneticParameters",
    "GeneticRouteSearch",
    "OptimizationScheduler",
    "RouteOptimizer",
    "SearchResult",
    "improvement_score",
    "route_cost",
    "route_sequences",
]
