from recall.services.diversity import DiversityFilter, overlap_ratio
from recall.services.memory_weights import ScoreComponents, ScoredMemory


def _scored(record_factory, score, concepts, text="Long enough memory text for quality", archived=False):
    record = record_factory(text=text, concepts=concepts, archived=archived)
    return ScoredMemory(
        record=record,
        score=score,
        components=ScoreComponents(semantic=0.0, temporal=0.0, importance=score, contextual=0.5),
        reason="recent_memory",
    )


def test_overlap_ratio():
    assert overlap_ratio([], {"x"}) == 0.0
    assert overlap_ratio(["x", "y"], {"x"}) == 0.5
    assert overlap_ratio(["x", "y"], {"x", "y"}) == 1.0


def test_redundant_memories_dropped_unless_high_score(record_factory):
    a = _scored(record_factory, 0.9, ["x", "y"])
    e = _scored(record_factory, 0.85, ["x", "y"])
    b = _scored(record_factory, 0.7, ["x", "y"])
    c = _scored(record_factory, 0.6, ["z"])
    d = _scored(record_factory, 0.5, [])

    selected = DiversityFilter().apply([a, e, b, c, d])

    assert [s.record.id for s in selected] == [a.record.id, e.record.id, c.record.id, d.record.id]


def test_quality_gate(record_factory):
    short = _scored(record_factory, 0.9, ["x"], text="too short")
    archived = _scored(record_factory, 0.9, ["y"], archived=True)
    keeper = _scored(record_factory, 0.4, ["z"])
    diversity = DiversityFilter()

    assert [s.record.id for s in diversity.apply([short, archived, keeper])] == [keeper.record.id]
    included = diversity.apply([short, archived, keeper], include_archived=True)
    assert [s.record.id for s in included] == [archived.record.id, keeper.record.id]


def test_selected_low_scorers_stay_below_overlap_bound(record_factory):
    concept_sets = [["a", "b"], ["a", "b", "c"], ["c"], ["a", "d"], ["d", "b"], ["e"], ["a", "b", "e"]]
    ranked = [
        _scored(record_factory, 0.75 - index * 0.05, concepts)
        for index, concepts in enumerate(concept_sets)
    ]
    diversity = DiversityFilter()

    selected = diversity.apply(ranked)

    used = set()
    for scored in selected:
        if scored.score <= diversity.high_score_override:
            assert overlap_ratio(scored.record.content.concepts, used) < diversity.diversity_threshold
        used.update(scored.record.content.concepts)
    assert len(selected) < len(ranked)
