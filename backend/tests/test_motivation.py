import pytest

from tracker.services import MOTIVATION_BANDS, MOTIVATION_TOP, motivational_message, percentage


@pytest.mark.parametrize('value,expected', [
    (0, MOTIVATION_BANDS[0][1]),
    (24.9, MOTIVATION_BANDS[0][1]),
    (25, MOTIVATION_BANDS[1][1]),
    (60, MOTIVATION_BANDS[2][1]),
    (89.99, MOTIVATION_BANDS[3][1]),
    (90, MOTIVATION_TOP),
    (100, MOTIVATION_TOP),
])
def test_motivational_message_bands(value, expected):
    assert motivational_message(value) == expected


def test_no_subjects_gets_the_lowest_band():
    assert motivational_message(100, has_subjects=False) == MOTIVATION_BANDS[0][1]


def test_percentage_handles_empty_totals():
    assert percentage(0, 0) == 0.0
    assert percentage(1, 4) == 25.0
