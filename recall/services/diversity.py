"""
Diversity and quality filtering over ranked memories.
"""

from __future__ import annotations

from recall.services.memory_weights import ScoredMemory


def overlap_ratio(concepts: list[str], used: set[str]) -> float:
    if not concepts:
        return 0.0
    return sum(1 for concept in concepts if concept in used) / len(concepts)


class DiversityFilter:
    def __init__(
        self,
        diversity_threshold: float = 0.8,
        high_score_override: float = 0.8,
        min_content_length: int = 10,
    ):
        self.diversity_threshold = diversity_threshold
        self.high_score_override = high_score_override
        self.min_content_length = min_content_length

    def passes_quality(self, scored: ScoredMemory, include_archived: bool) -> bool:
        original = scored.record.content.original
        if not original or len(original.strip()) < self.min_content_length:
            return False
        if scored.record.retention.is_archived and not include_archived:
            return False
        return True

    def apply(self, ranked: list[ScoredMemory], include_archived: bool = False) -> list[ScoredMemory]:
        """Greedy pass over a score-descending list."""
        used: set[str] = set()
        selected: list[ScoredMemory] = []
        for scored in ranked:
            if not self.passes_quality(scored, include_archived):
                continue
            concepts = scored.record.content.concepts
            if (
                overlap_ratio(concepts, used) < self.diversity_threshold
                or scored.score > self.high_score_override
            ):
                selected.append(scored)
                used.update(concepts)
        return selected
