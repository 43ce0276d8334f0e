from chatlens.analysis.context_ranges import (
    HitRange,
    MessagePredicate,
    build_ranges,
    merge_ranges,
    paginate,
)


def test_build_ranges_clips_and_merges_adjacent():
    ranges = build_ranges([0, 5, 6, 20], total=25, context_size=2)

    assert [(item.start, item.end) for item in ranges] == [(0, 8), (18, 22)]
    assert ranges[0].hit_indexes == [0, 5, 6]
    assert ranges[1].hit_indexes == [20]


def test_adjacent_ranges_coalesce():
    merged = merge_ranges([HitRange(0, 3, [1]), HitRange(4, 6, [5])])

    assert [(item.start, item.end, item.hit_indexes) for item in merged] == [(0, 6, [1, 5])]


def test_merge_is_idempotent_and_preserves_hits():
    raw = [HitRange(10, 12, [11]), HitRange(0, 2, [1]), HitRange(2, 5, [3]), HitRange(30, 31, [30])]
    once = merge_ranges(raw)
    twice = merge_ranges(once)

    assert [(r.start, r.end, r.hit_indexes) for r in once] == [
        (r.start, r.end, r.hit_indexes) for r in twice
    ]
    assert sorted(i for r in once for i in r.hit_indexes) == [1, 3, 11, 30]
    for earlier, later in zip(once, once[1:]):
        assert later.start > earlier.end + 1


def test_zero_context_and_empty_stream():
    assert [(r.start, r.end) for r in build_ranges([3, 4], total=10, context_size=0)] == [(3, 4)]
    assert build_ranges([1], total=0, context_size=5) == []


def test_pagination_is_complete():
    items = list(range(23))
    collected = []
    page = 1
    while True:
        chunk, has_more = paginate(items, page, 5)
        collected.extend(chunk)
        if not has_more:
            break
        page += 1

    assert collected == items
    assert page == 5
    assert paginate(items, 9, 5) == ([], False)


def test_predicate_keywords_or_and_senders():
    predicate = MessagePredicate.build(["Hello", "bye"], [2])

    assert predicate.matches(2, "well HELLO there")
    assert predicate.matches(2, "goodbye")
    assert not predicate.matches(1, "hello")
    assert not predicate.matches(2, None)
    assert MessagePredicate.build().matches(9, None)
