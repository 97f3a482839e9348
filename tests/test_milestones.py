"""Tests for cumulative milestone ladders."""

import pytest

from clubledger.utils.ledger_exceptions import ValidationError
from clubledger.utils.milestones import Milestone, MilestoneCalculator

LADDER = [
    {"count": 5, "points": 10},
    {"count": 10, "points": 15},
    {"count": 20, "points": 25},
]


@pytest.fixture
def ladder():
    return MilestoneCalculator.parse_ladder(LADDER)


def test_parse_ladder(ladder):
    assert ladder == [Milestone(5, 10), Milestone(10, 15), Milestone(20, 25)]


@pytest.mark.parametrize("index, expected", [(0, 10), (1, 25), (2, 50)])
def test_cumulative_points(ladder, index, expected):
    assert MilestoneCalculator.cumulative_points(ladder, index) == expected


@pytest.mark.parametrize("index", [-1, 3, None])
def test_cumulative_points_rejects_bad_index(ladder, index):
    with pytest.raises(ValidationError):
        MilestoneCalculator.cumulative_points(ladder, index)


@pytest.mark.parametrize("raw", [
    [],
    None,
    [{"count": 10, "points": 5}, {"count": 5, "points": 5}],
    [{"count": 5, "points": 5}, {"count": 5, "points": 10}],
    [{"count": "many", "points": 5}],
    [{"count": 5}],
    [{"count": 0, "points": 5}],
    [{"count": 5, "points": -1}],
    ["5:10"],
])
def test_parse_ladder_rejects_malformed(raw):
    with pytest.raises(ValidationError):
        MilestoneCalculator.parse_ladder(raw)


@pytest.mark.parametrize("achieved, index", [(5, 0), (12, 1), (20, 2), (100, 2)])
def test_index_for_count_picks_highest_reached(ladder, achieved, index):
    assert MilestoneCalculator.index_for_count(ladder, achieved) == index


@pytest.mark.parametrize("achieved", [0, 4, -3])
def test_index_for_count_without_reached_milestone(ladder, achieved):
    with pytest.raises(ValidationError):
        MilestoneCalculator.index_for_count(ladder, achieved)
