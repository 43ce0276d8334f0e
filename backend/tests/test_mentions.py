from chatlens.analysis.mentions import (
    AliasIndex,
    MentionMatrix,
    analyze_mentions,
    build_mention_graph,
    build_mention_matrix,
    classify_one_way,
    classify_two_way,
    extract_mentions,
)
from chatlens.analysis.types import MemberRecord, MessageRecord

ALICE = MemberRecord(id=1, name="Alice", platform_id="u-1001", history_names=("Ally",))
BOB = MemberRecord(id=2, name="Bob", platform_id="u-1002", aliases=("bobby",))
CAROL = MemberRecord(id=3, name="Carol", platform_id="u-1003")
MEMBERS = [ALICE, BOB, CAROL]


def _messages(*rows):
    return [
        MessageRecord(id=index, sender_id=sender, ts=index * 10, content=content)
        for index, (sender, content) in enumerate(rows, start=1)
    ]


def test_extract_mentions_tokens():
    assert extract_mentions("@Bob hi @Carol, see @@x") == ["Bob", "Carol,", "x"]
    assert extract_mentions(None) == []
    assert extract_mentions("no mention here") == []


def test_alias_index_precedence_and_ambiguity():
    dup_a = MemberRecord(id=10, name="Sam")
    dup_b = MemberRecord(id=11, name="sam")
    renamed = MemberRecord(id=12, name="Max", history_names=("Bob",))
    index = AliasIndex.build([ALICE, BOB, dup_a, dup_b, renamed])

    assert index.resolve("bob") == 2
    assert index.resolve("ALLY") == 1
    assert index.resolve("Bobby") == 2
    assert index.resolve("Sam") is None
    assert index.resolve("Alice!") == 1
    assert index.resolve("nobody") is None


def test_matrix_ignores_self_and_repeated_targets():
    messages = _messages(
        (1, "@Alice talking to myself"),
        (1, "@Bob @Bob @bobby twice"),
        (2, "@Alice @Carol @ghost"),
    )
    matrix = build_mention_matrix(messages, AliasIndex.build(MEMBERS))

    assert matrix.get(1, 1) == 0
    assert matrix.get(1, 2) == 1
    assert matrix.get(2, 1) == 1
    assert matrix.get(2, 3) == 1
    assert matrix.total == 3
    assert matrix.mention_count(1, 2) == matrix.mention_count(2, 1) == 2


def test_example_scenario_has_no_classification():
    messages = _messages((1, "@Bob hi"), (2, "@Alice yo"), (3, "hello"))
    matrix = build_mention_matrix(messages, AliasIndex.build(MEMBERS))
    analysis = analyze_mentions(matrix, MEMBERS)

    assert matrix.mention_count(1, 2) == 2
    assert analysis.total_mentions == 2
    assert analysis.one_way == []
    assert analysis.two_way == []


def test_one_way_threshold_boundaries():
    assert classify_one_way(2, 0) is None
    assert classify_one_way(3, 0) == (True, 1.0)
    assert classify_one_way(4, 1) == (True, 0.8)
    assert classify_one_way(3, 1) is None
    assert classify_one_way(0, 4) == (False, 1.0)


def test_two_way_threshold_boundaries():
    assert classify_two_way(2, 2) is None
    assert classify_two_way(3, 2) is not None
    assert classify_two_way(5, 0) is None
    assert classify_two_way(10, 3) == 0.3
    assert classify_two_way(10, 2) is None


def test_one_way_and_two_way_are_exclusive():
    matrix = MentionMatrix()
    matrix.add(1, 2, 8)
    matrix.add(2, 1, 3)
    analysis = analyze_mentions(matrix, MEMBERS)

    # 8/11 < 0.8, so only mutual
    assert analysis.one_way == []
    assert len(analysis.two_way) == 1

    matrix = MentionMatrix()
    matrix.add(1, 2, 12)
    matrix.add(2, 1, 3)
    analysis = analyze_mentions(matrix, MEMBERS)
    assert len(analysis.one_way) == 1
    assert analysis.one_way[0].from_member_id == 1
    assert analysis.one_way[0].ratio == 0.8
    assert len(analysis.two_way) == 0


def test_rankings_percentages_and_details():
    matrix = MentionMatrix()
    matrix.add(1, 2, 3)
    matrix.add(3, 2, 1)
    analysis = analyze_mentions(matrix, MEMBERS)

    assert analysis.top_mentioners[0].member_id == 1
    assert analysis.top_mentioners[0].percentage == 75.0
    assert analysis.top_mentioned[0].member_id == 2
    assert analysis.top_mentioned[0].percentage == 100.0
    bob = next(item for item in analysis.member_details if item.member_id == 2)
    assert [link.from_member_id for link in bob.top_mentioners] == [1, 3]
    assert bob.top_mentioned == []


def test_mention_graph_only_involved_members():
    matrix = MentionMatrix()
    matrix.add(1, 2, 2)
    graph = build_mention_graph(matrix, MEMBERS)

    assert {node.id for node in graph.nodes} == {1, 2}
    assert graph.links[0].source == "Alice"
    assert graph.max_link_value == 2
