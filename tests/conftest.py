"""Shared fixtures for the spot price chart tests."""

from __future__ import annotations

import datetime as dt

import pytest

from price_helpers import DAY_ONE, make_records


@pytest.fixture()
def day_records() -> list[dict]:
    return make_records(DAY_ONE, 24)


@pytest.fixture()
def two_day_records() -> list[dict]:
    return make_records(DAY_ONE, 24) + make_records(DAY_ONE + dt.timedelta(days=1), 24)
