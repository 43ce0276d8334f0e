import math

import pytest

from chatlens.analysis.temporal import (
    decay_weight,
    expected_pair_score,
    position_weight,
    score_temporal,
)
from chatlens.analysis.types import MessageRecord


def _stream(*rows):
    return [
        MessageRecord(id=index, sender_id=sender, ts=ts)
        for index, (sender, ts) in enumerate(rows, start=1)
    ]


def test_decay_is_strictly_decreasing():
    weights = [decay_weight(delta, 120) for delta in (0, 1, 30, 120, 600, 6000)]
    assert weights[0] == 1.0
    assert all(a > b for a, b in zip(weights, weights[1:]))
    assert decay_weight(120, 120) == pytest.approx(math.exp(-1))


def test_position_weight_steps():
    assert [position_weight(k) for k in (1, 2, 3)] == pytest.approx([1.0, 0.8, 0.6])


def test_lookahead_skips_own_speaker_and_repeat_partners():
    messages = _stream((1, 0), (1, 5), (2, 10), (2, 20), (3, 30))
    result = score_temporal(messages, look_ahead=3, decay_seconds=120)

    ab = result.pairs.get(1, 2)
    ac = result.pairs.get(1, 3)
    # anchors 1@0 and 1@5 each see B then C; B@10 and B@20 each see C
    assert ab.temporal_turns == 2
    assert ac.temporal_turns == 2
    assert result.pairs.get(2, 3).temporal_turns == 2
    expected = decay_weight(10, 120) + decay_weight(5, 120)
    assert ab.temporal_score == pytest.approx(expected)
    assert ac.temporal_score == pytest.approx(
        (decay_weight(30, 120) + decay_weight(25, 120)) * 0.8
    )
    assert ab.avg_delta_sec == pytest.approx(7.5)


def test_lookahead_stops_after_distinct_partners():
    messages = _stream((1, 0), (2, 1), (3, 2), (4, 3))
    result = score_temporal(messages, look_ahead=2)

    assert result.pairs.get(1, 2) is not None
    assert result.pairs.get(1, 3) is not None
    assert result.pairs.get(1, 4) is None


def test_window_mode_uses_time_bound_and_skips_simultaneous():
    messages = _stream((1, 0), (2, 0), (3, 100), (4, 400))
    result = score_temporal(messages, window_seconds=300, decay_seconds=120)

    assert result.pairs.get(1, 2) is None
    assert result.pairs.get(1, 3).temporal_score == pytest.approx(decay_weight(100, 120))
    assert result.pairs.get(1, 4) is None
    assert result.pairs.get(3, 4).temporal_turns == 1


def test_hybrid_scores_are_normalized():
    messages = _stream((1, 0), (2, 10), (1, 20), (2, 30), (3, 500), (1, 510))
    result = score_temporal(messages)

    scored = [pair for pair in result.pairs if pair.temporal_turns]
    assert max(pair.hybrid_score for pair in scored) <= 1.0
    assert all(pair.hybrid_score >= 0 for pair in scored)
    assert result.max_raw_score == max(pair.temporal_score for pair in scored)


def test_expected_pair_score_baseline():
    assert expected_pair_score(10, 5, 100, 3) == pytest.approx(0.5 * 3 * 0.8)
    assert expected_pair_score(1, 1, 0, 3) == 0.0


def test_invalid_parameters():
    with pytest.raises(ValueError):
        score_temporal([], decay_seconds=0)
    with pytest.raises(ValueError):
        score_temporal([], look_ahead=0)
