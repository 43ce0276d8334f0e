from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Dict, List, Tuple

from chatlens.analysis.types import MemberId

MAX_ITERATIONS = 25


@dataclass(frozen=True)
class Community:
    id: int
    name: str
    size: int


def label_propagation(
    node_ids: Sequence[MemberId],
    weighted_edges: Iterable[Tuple[MemberId, MemberId, float]],
) -> Tuple[Dict[MemberId, int], List[Community]]:
    """Weighted label propagation; community ids are ranked by size."""

    adjacency: Dict[MemberId, Dict[MemberId, float]] = {node: {} for node in node_ids}
    weighted_degree: Dict[MemberId, float] = {node: 0.0 for node in node_ids}
    for source, target, weight in weighted_edges:
        if source not in adjacency or target not in adjacency:
            continue
        adjacency[source][target] = adjacency[source].get(target, 0.0) + weight
        adjacency[target][source] = adjacency[target].get(source, 0.0) + weight
        weighted_degree[source] += weight
        weighted_degree[target] += weight

    labels: Dict[MemberId, str] = {node: str(node) for node in node_ids}
    order = sorted(node_ids, key=lambda node: weighted_degree[node], reverse=True)

    for _ in range(MAX_ITERATIONS):
        changed = False
        for node in order:
            neighbors = adjacency[node]
            if not neighbors:
                continue
            scores: Dict[str, float] = {}
            for neighbor, weight in neighbors.items():
                label = labels[neighbor]
                scores[label] = scores.get(label, 0.0) + weight

            best_label = labels[node]
            best_score = -1.0
            for label, score in scores.items():
                if score > best_score or (score == best_score and label < best_label):
                    best_label = label
                    best_score = score
            if best_label != labels[node]:
                labels[node] = best_label
                changed = True
        if not changed:
            break

    sizes: Dict[str, int] = {}
    for label in labels.values():
        sizes[label] = sizes.get(label, 0) + 1
    ranked = sorted(sizes.items(), key=lambda item: item[1], reverse=True)
    category_by_label = {label: index for index, (label, _) in enumerate(ranked)}

    assignment = {node: category_by_label[label] for node, label in labels.items()}
    communities = [
        Community(id=index, name=f"Community {index + 1}", size=size)
        for index, (_, size) in enumerate(ranked)
    ]
    return assignment, communities
