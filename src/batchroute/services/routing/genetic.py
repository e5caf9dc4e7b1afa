"""Genetic search over stop permutations.

Individuals are permutations of stop indices. The cost of an individual is
the distance from the origin to its first stop plus the sum of consecutive
stop distances (and the leg back to the origin when the route is closed).
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from ...config import settings
from ...errors import OptimizationCancelled, OptimizationTimeout

logger = logging.getLogger(__name__)

# Routes this short are enumerated instead of searched.
EXACT_SEARCH_LIMIT = 2


@dataclass(slots=True)
class GeneticParameters:
    population_size: int = 100
    max_generations: int = 500
    mutation_rate: float = 0.02
    crossover_rate: float = 1.0
    elite_count: int = 10
    tournament_size: int = 5
    stagnation_generations: int = 50
    convergence_threshold: float = 0.001
    time_budget_seconds: float = 2.0
    seed: Optional[int] = None

    @classmethod
    def from_settings(cls) -> "GeneticParameters":
        return cls(
            population_size=settings.ga_population_size,
            max_generations=settings.ga_max_generations,
            mutation_rate=settings.ga_mutation_rate,
            crossover_rate=settings.ga_crossover_rate,
            elite_count=settings.ga_elite_count,
            tournament_size=settings.ga_tournament_size,
            stagnation_generations=settings.ga_stagnation_generations,
            convergence_threshold=settings.ga_convergence_threshold,
            time_budget_seconds=settings.ga_time_budget_seconds,
            seed=settings.ga_seed,
        )


@dataclass(slots=True)
class SearchResult:
    order: List[int]
    cost: float
    generations: int
    history: List[float] = field(default_factory=list)


def population_costs(
    population: np.ndarray,
    matrix: np.ndarray,
    origin_distances: np.ndarray,
    return_to_origin: bool = False,
) -> np.ndarray:
    """Route cost for every row of a (size, n) permutation array."""

    costs = origin_distances[population[:, 0]].astype(float)
    if population.shape[1] > 1:
        costs = costs + matrix[population[:, :-1], population[:, 1:]].sum(axis=1)
    if return_to_origin:
        costs = costs + origin_distances[population[:, -1]]
    return costs


def route_cost(
    order: Sequence[int],
    matrix: np.ndarray,
    origin_distances: np.ndarray,
    return_to_origin: bool = False,
) -> float:
    if len(order) == 0:
        return 0.0
    return float(
        population_costs(np.asarray([order], dtype=int), matrix, origin_distances, return_to_origin)[0]
    )


def nearest_neighbour(matrix: np.ndarray, origin_distances: np.ndarray) -> list[int]:
    """Greedy tour starting from the stop nearest the origin."""

    n = len(origin_distances)
    if n == 0:
        return []
    current = int(np.argmin(origin_distances))
    tour = [current]
    visited = np.zeros(n, dtype=bool)
    visited[current] = True
    for _ in range(n - 1):
        candidates = np.where(visited, np.inf, matrix[current])
        current = int(np.argmin(candidates))
        visited[current] = True
        tour.append(current)
    return tour


def ordered_crossover(parent_a: np.ndarray, parent_b: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """OX: keep a slice of ``parent_a``, fill the rest in ``parent_b``'s order."""

    n = len(parent_a)
    start, end = sorted(rng.choice(n + 1, size=2, replace=False))
    child = np.full(n, -1, dtype=int)
    child[start:end] = parent_a[start:end]
    kept = set(child[start:end].tolist())
    fill = [gene for gene in parent_b.tolist() if gene not in kept]
    child[:start] = fill[:start]
    child[end:] = fill[start:]
    return child


def swap_mutation(individual: np.ndarray, rate: float, rng: np.random.Generator) -> None:
    n = len(individual)
    if n < 2 or rate <= 0:
        return
    for i in np.flatnonzero(rng.random(n) < rate):
        j = int(rng.integers(n))
        individual[i], individual[j] = individual[j], individual[i]


def tournament_select(
    population: np.ndarray, costs: np.ndarray, size: int, rng: np.random.Generator
) -> np.ndarray:
    contenders = rng.choice(len(population), size=min(size, len(population)), replace=False)
    return population[contenders[np.argmin(costs[contenders])]]


class GeneticRouteSearch:
    """Bounded-time permutation search with elitism and stagnation stop.

    ``search`` raises ``OptimizationTimeout`` carrying the best order found
    when the wall-clock budget runs out, and ``OptimizationCancelled`` when
    the cancel event is set between generations.
    """

    def __init__(self, params: GeneticParameters | None = None) -> None:
        self.params = params or GeneticParameters.from_settings()

    def search(
        self,
        matrix: np.ndarray,
        origin_distances: np.ndarray,
        *,
        return_to_origin: bool = False,
        seeds: Sequence[Sequence[int]] = (),
        cancel_event: threading.Event | None = None,
    ) -> SearchResult:
        n = len(origin_distances)
        if n == 0:
            return SearchResult(order=[], cost=0.0, generations=0)
        if n <= EXACT_SEARCH_LIMIT:
            return self._enumerate(matrix, origin_distances, return_to_origin)

        params = self.params
        rng = np.random.default_rng(params.seed)
        pop_size = max(params.population_size, len(seeds) + 2, 2)
        elite = max(1, min(params.elite_count, pop_size - 1))

        initial = [np.asarray(seed, dtype=int) for seed in seeds]
        initial.append(np.asarray(nearest_neighbour(matrix, origin_distances), dtype=int))
        while len(initial) < pop_size:
            initial.append(rng.permutation(n))
        population = np.stack(initial[:pop_size])

        best_order = population[0].copy()
        best_cost = float("inf")
        stagnant = 0
        history: list[float] = []
        started = time.monotonic()
        generation = 0

        for generation in range(1, params.max_generations + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise OptimizationCancelled(f"Route search cancelled at generation {generation}")

            costs = population_costs(population, matrix, origin_distances, return_to_origin)
            ranked = np.argsort(costs, kind="stable")
            generation_best = float(costs[ranked[0]])
            history.append(generation_best)

            if best_cost - generation_best > params.convergence_threshold:
                stagnant = 0
            else:
                stagnant += 1
            if generation_best < best_cost:
                best_cost = generation_best
                best_order = population[ranked[0]].copy()

            if stagnant >= params.stagnation_generations:
                break
            if time.monotonic() - started > params.time_budget_seconds:
                raise OptimizationTimeout(
                    f"Route search stopped after {generation} generations "
                    f"({params.time_budget_seconds:.2f}s budget)",
                    best_order.tolist(),
                    generations=generation,
                )

            offspring = [population[index].copy() for index in ranked[:elite]]
            while len(offspring) < pop_size:
                parent_a = tournament_select(population, costs, params.tournament_size, rng)
                if rng.random() < params.crossover_rate:
                    parent_b = tournament_select(population, costs, params.tournament_size, rng)
                    child = ordered_crossover(parent_a, parent_b, rng)
                else:
                    child = parent_a.copy()
                swap_mutation(child, params.mutation_rate, rng)
                offspring.append(child)
            population = np.stack(offspring)

        logger.debug(f"Route search finished: {generation} generations, cost {best_cost:.3f}km")
        return SearchResult(order=best_order.tolist(), cost=best_cost, generations=generation, history=history)

    def _enumerate(
        self, matrix: np.ndarray, origin_distances: np.ndarray, return_to_origin: bool
    ) -> SearchResult:
        n = len(origin_distances)
        best = min(
            itertools.permutations(range(n)),
            key=lambda order: route_cost(order, matrix, origin_distances, return_to_origin),
        )
        return SearchResult(
            order=list(best),
            cost=route_cost(best, matrix, origin_distances, return_to_origin),
            generations=0,
        )
