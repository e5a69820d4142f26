from __future__ import annotations

from datetime import date

import pytest

from deepdive.tools.text_utils import extract_keywords, parse_date


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2023-05-17", date(2023, 5, 17)),
        ("2021 Mar 4", date(2021, 3, 4)),
        ("2019 Dec", date(2019, 12, 1)),
        ("March 2020", date(2020, 3, 1)),
        ("2018-13-45 garbage", date(2018, 1, 1)),
    ],
)
def test_parse_date_formats(raw, expected):
    assert parse_date(raw) == expected


@pytest.mark.parametrize("raw", ["0000-00-00", "0000", "n/a", "", None])
def test_parse_date_returns_none_for_unusable_values(raw):
    assert parse_date(raw) is None


def test_extract_keywords_drops_stopwords_and_duplicates():
    assert extract_keywords("What are the side effects of metformin and Metformin XR?") == [
        "side", "effects", "metformin",
    ]
