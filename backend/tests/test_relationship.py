import math

import pytest

from chatlens.analysis.mentions import MentionMatrix
from chatlens.analysis.relationship import (
    RelationshipOptions,
    build_relationship_graph,
    normalize_options,
    score_pairs,
    unique_display_names,
)
from chatlens.analysis.types import MemberRecord, MessageRecord, PairTable


def _members(count):
    return [
        MemberRecord(id=index, name=f"m{index}", platform_id=f"p{index:05d}", message_count=index)
        for index in range(1, count + 1)
    ]


def test_normalize_options_defaults_and_corrections():
    options = normalize_options(
        {
            "mention_weight": 3,
            "temporal_weight": 1,
            "decay_seconds": -5,
            "window_seconds": math.inf,
            "look_ahead": "2",
            "mode": "WINDOW",
            "unknown": 1,
        }
    )

    assert options.mention_weight == pytest.approx(0.75)
    assert options.temporal_weight == pytest.approx(0.25)
    assert options.reciprocity_weight == 0
    assert options.decay_seconds == 120
    assert options.window_seconds == 300
    assert options.look_ahead == 2
    assert options.mode == "window"
    assert normalize_options(None) == RelationshipOptions()


def test_zero_weights_fall_back():
    options = normalize_options({"mention_weight": 0, "temporal_weight": 0})

    assert (options.mention_weight, options.temporal_weight, options.reciprocity_weight) == (
        0.6,
        0.4,
        0.0,
    )


def test_mention_only_pair_with_full_closeness():
    members = _members(2)
    pairs = PairTable()
    pairs.get_or_create(1, 2).add_mention(1, 2, 4)
    graph = build_relationship_graph(pairs, members, normalize_options({}))

    assert len(graph.edges) == 1
    edge = graph.edges[0]
    assert edge.value == pytest.approx(0.6)
    assert edge.mention_ab == 4
    assert {node.id for node in graph.nodes} == {1, 2}


def test_top_edges_truncation_and_no_isolated_nodes():
    members = _members(12)
    pairs = PairTable()
    for a in range(1, 13):
        for b in range(a + 1, 13):
            pairs.get_or_create(a, b).add_mention(a, b, a + b)
    options = normalize_options({"top_edges": 5, "min_score": 0})
    graph = build_relationship_graph(pairs, members, options)

    assert len(graph.edges) == 5
    assert graph.stats.raw_edge_count == 66
    endpoint_ids = {edge.source_id for edge in graph.edges} | {
        edge.target_id for edge in graph.edges
    }
    assert {node.id for node in graph.nodes} == endpoint_ids
    assert all(node.degree > 0 for node in graph.nodes)
    values = [edge.value for edge in graph.edges]
    assert values == sorted(values, reverse=True)


def test_temporal_only_pair_needs_min_turns():
    members = _members(3)
    messages = [
        MessageRecord(id=1, sender_id=1, ts=0),
        MessageRecord(id=2, sender_id=2, ts=5),
        MessageRecord(id=3, sender_id=1, ts=10),
        MessageRecord(id=4, sender_id=3, ts=5000),
    ]
    options = normalize_options({"min_score": 0, "look_ahead": 1})
    scored = score_pairs(messages, None, options)
    graph = build_relationship_graph(scored.pairs, members, options)

    kept = {(edge.source_id, edge.target_id) for edge in graph.edges}
    assert (1, 2) in kept
    assert scored.pairs.get(1, 2).temporal_turns == 2
    assert (1, 3) not in kept
    assert (2, 3) not in kept


def test_focus_member_filters_edges():
    members = _members(4)
    matrix = MentionMatrix()
    matrix.add(1, 2, 5)
    matrix.add(3, 4, 5)
    options = normalize_options({"min_score": 0})
    scored = score_pairs([], matrix, options)
    graph = build_relationship_graph(scored.pairs, members, options, focus_member_id=3)

    assert [(edge.source_id, edge.target_id) for edge in graph.edges] == [(3, 4)]


def test_empty_input_yields_empty_graph():
    graph = build_relationship_graph(PairTable(), _members(3), RelationshipOptions())

    assert graph.nodes == []
    assert graph.edges == []
    assert graph.stats.total_members == 3


def test_duplicate_names_get_platform_suffix():
    names = unique_display_names(
        [
            MemberRecord(id=1, name="Kim", platform_id="abc1234"),
            MemberRecord(id=2, name="Kim", platform_id="xyz9876"),
            MemberRecord(id=3, name="Lee", platform_id="q1"),
        ]
    )

    assert names == {1: "Kim#1234", 2: "Kim#9876", 3: "Lee"}


def test_communities_group_connected_members():
    members = _members(4)
    pairs = PairTable()
    pairs.get_or_create(1, 2).add_mention(1, 2, 5)
    pairs.get_or_create(3, 4).add_mention(3, 4, 5)
    graph = build_relationship_graph(pairs, members, normalize_options({"min_score": 0}))

    by_id = {node.id: node for node in graph.nodes}
    assert by_id[1].community == by_id[2].community
    assert by_id[3].community == by_id[4].community
    assert by_id[1].community != by_id[3].community
    assert sorted(community.size for community in graph.communities) == [2, 2]
