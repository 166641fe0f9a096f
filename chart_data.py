from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
import pytz

import config

POINT_COLUMNS = ["label", "full_label", "price", "timestamp", "day_key"]
MS_PER_MINUTE = 60_000
EPOCH = pd.Timestamp(0, tz="UTC")
RELATIVE_DATE_WORDS = ("now", "today")

# ---------------------------------------------------------
# Records and chart types
# ---------------------------------------------------------
@dataclass(frozen=True)
class PriceRecord:
    """One upstream price entry. Every field may be missing."""
    date_time: Optional[str] = None
    price_with_tax: Optional[float] = None
    price_no_tax: Optional[float] = None
    rank: Optional[int] = None

    @classmethod
    def from_payload(cls, item: Mapping[str, Any]) -> "PriceRecord":
        return cls(
            date_time=item.get("DateTime"),
            price_with_tax=item.get("PriceWithTax"),
            price_no_tax=item.get("PriceNoTax"),
            rank=item.get("Rank"),
        )

    def selected_price(self, use_tax: bool) -> Optional[float]:
        return self.price_with_tax if use_tax else self.price_no_tax


@dataclass(frozen=True)
class Marker:
    x: int
    label: str


@dataclass(frozen=True)
class PriceStats:
    min: float
    max: float
    avg: float


@dataclass(frozen=True)
class DayBucket:
    """Price ranking of a single calendar day; limits are point counts."""
    day_key: str
    order: tuple
    green_limit: int
    yellow_limit: int

    @classmethod
    def from_points(cls, day_key: str, day: pd.DataFrame, pph: int) -> "DayBucket":
        ranked = day.sort_values("price", kind="mergesort")
        count = len(ranked)
        return cls(
            day_key=day_key,
            order=tuple(ranked.index),
            green_limit=min(count, config.LOW_HOURS * pph),
            yellow_limit=min(count, config.MID_HOURS * pph),
        )

    def tier(self, rank: int) -> str:
        if rank < self.green_limit:
            return "low"
        if rank < self.yellow_limit:
            return "mid"
        return "high"


@dataclass(frozen=True)
class ChartOptions:
    use_tax: bool = True
    value_multiplier: float = 1
    show_past: bool = False
    container_width: Optional[float] = None
    tz: str = config.LOCAL_TIMEZONE


@dataclass
class ChartOutput:
    points: pd.DataFrame
    step_minutes: int
    points_per_hour: int
    step_ms: int
    tz: str = config.LOCAL_TIMEZONE
    axis_ticks: Optional[list[int]] = None
    tick_labels: list[str] = field(default_factory=list)
    day_markers: list[Marker] = field(default_factory=list)
    now_marker: Optional[Marker] = None
    x_range: Optional[tuple[int, int]] = None
    bar_width: Optional[int] = None
    stats: Optional[PriceStats] = None

    @property
    def is_empty(self) -> bool:
        return self.points.empty


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

def _resolve_tz(tz) -> dt.tzinfo:
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz

def _to_local(ms: int, tz) -> pd.Timestamp:
    return pd.Timestamp(int(ms), unit="ms", tz="UTC").tz_convert(tz)

def _epoch_ms(ts: pd.Timestamp) -> int:
    return int((ts - EPOCH) // pd.Timedelta(milliseconds=1))

def _to_epoch_ms(value, tz) -> int:
    if value is None:
        value = dt.datetime.now(dt.timezone.utc)
    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        return int(value)
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(tz, ambiguous=False, nonexistent="shift_forward")
    return _epoch_ms(ts)

def _parse_timestamp(value, tz) -> Optional[pd.Timestamp]:
    if not isinstance(value, (str, dt.datetime)):
        return None
    # pandas reads "now"/"today" as the current time
    if isinstance(value, str) and (not value.strip() or value.strip().lower() in RELATIVE_DATE_WORDS):
        return None
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        return ts.tz_localize(tz, ambiguous=False, nonexistent="shift_forward")
    return ts.tz_convert(tz)

def _parse_price(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(price):
        return None
    return price

def _capitalize(word: str) -> str:
    return f"{word[0].upper()}{word[1:]}" if word else ""

def format_day_key(local: pd.Timestamp) -> str:
    return local.strftime("%Y-%m-%d")

def format_tooltip_label(local: pd.Timestamp) -> str:
    weekday = _capitalize(config.WEEKDAYS_LONG[local.weekday()])
    return f"{weekday} {local.day}.{local.month} {local.strftime('%H.%M')}"

def format_day_line_label(local: pd.Timestamp) -> str:
    weekday = _capitalize(config.WEEKDAYS_SHORT[local.weekday()])
    return f"{weekday} {local.day}.{local.month}"

def format_hour_tick(ms: int, tz=config.LOCAL_TIMEZONE) -> str:
    return str(_to_local(ms, _resolve_tz(tz)).hour)

def normalize_payload(payload: Any) -> list[PriceRecord]:
    """Accept the upstream JSON as a list of entries or a single entry."""
    if isinstance(payload, list):
        return [PriceRecord.from_payload(item) for item in payload if isinstance(item, Mapping)]
    if isinstance(payload, Mapping) and "DateTime" in payload:
        return [PriceRecord.from_payload(payload)]
    return []

# ---------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------
def normalize_records(
    records: Union[Sequence[Union[PriceRecord, Mapping[str, Any]]], PriceRecord, Mapping[str, Any], None],
    use_tax: bool = True,
    value_multiplier: float = 1,
    tz=config.LOCAL_TIMEZONE,
) -> pd.DataFrame:
    """
    Turn raw price records into chart points:
    - drop records without a parseable timestamp or without the selected price
    - scale the selected price by value_multiplier
    - derive day key and labels from the local wall clock
    - sort ascending by timestamp (stable for equal timestamps)
    """
    tz = _resolve_tz(tz)
    if records is None:
        records = []
    elif isinstance(records, (PriceRecord, Mapping)):
        records = [records]

    rows = []
    dropped = 0
    for item in records:
        if isinstance(item, Mapping):
            item = PriceRecord.from_payload(item)
        elif not isinstance(item, PriceRecord):
            dropped += 1
            continue
        local = _parse_timestamp(item.date_time, tz)
        raw_price = _parse_price(item.selected_price(use_tax))
        if local is None or raw_price is None:
            dropped += 1
            continue
        rows.append(
            {
                "label": local.strftime("%H:%M"),
                "full_label": format_tooltip_label(local),
                "price": raw_price * value_multiplier,
                "timestamp": _epoch_ms(local),
                "day_key": format_day_key(local),
            }
        )
    if dropped:
        logging.debug(f"Dropped {dropped} invalid price records")

    df = pd.DataFrame(rows, columns=POINT_COLUMNS).astype({"price": "float64", "timestamp": "int64"})
    return df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)

def estimate_step_minutes(points: pd.DataFrame) -> int:
    """Median of the positive timestamp deltas, in whole minutes."""
    if len(points) < 2:
        return config.DEFAULT_STEP_MINUTES
    diffs = np.diff(points["timestamp"].to_numpy(dtype=np.int64))
    diffs = np.sort(diffs[diffs > 0])
    if diffs.size == 0:
        return config.DEFAULT_STEP_MINUTES
    median = diffs[(diffs.size - 1) // 2]
    minutes = _round_half_up(median / MS_PER_MINUTE)
    return minutes or config.DEFAULT_STEP_MINUTES

def points_per_hour(step_minutes: int) -> int:
    return max(1, _round_half_up(60 / step_minutes))

def day_buckets(points: pd.DataFrame, pph: int) -> list[DayBucket]:
    return [
        DayBucket.from_points(day_key, day, pph)
        for day_key, day in points.groupby("day_key", sort=False)
    ]

def color_by_day(points: pd.DataFrame, points_per_hour: int) -> pd.DataFrame:
    """Rank each day's prices and attach the low/mid/high tier and its fill color."""
    ranks = pd.Series(0, index=points.index, dtype="int64")
    tiers = pd.Series("high", index=points.index, dtype=object)
    for bucket in day_buckets(points, points_per_hour):
        for rank, idx in enumerate(bucket.order):
            ranks.at[idx] = rank
            tiers.at[idx] = bucket.tier(rank)
    return points.assign(rank=ranks, tier=tiers, fill=tiers.map(config.PRICE_COLORS))

def filter_visible(points: pd.DataFrame, show_past: bool, step_ms: int, now_ms: int) -> pd.DataFrame:
    """
    Keep points whose interval has not fully elapsed, unless show_past is set.
    Past points that stay visible are flagged with is_past.
    """
    ends = points["timestamp"] + step_ms
    if show_past:
        visible = points.assign(is_past=(ends <= now_ms).astype(bool))
    else:
        kept = points.loc[ends > now_ms]
        visible = kept.assign(is_past=pd.Series(False, index=kept.index, dtype=bool))
    return visible.reset_index(drop=True)

def axis_ticks(points: pd.DataFrame, tz=config.LOCAL_TIMEZONE) -> Optional[list[int]]:
    """Every second full hour (local time) between the first and the last point."""
    if points.empty:
        return None
    tz = _resolve_tz(tz)
    start_ms = int(points["timestamp"].iloc[0])
    end_ms = int(points["timestamp"].iloc[-1])

    # step on the local wall clock so clock-change days stay on even hours
    start_wall = _to_local(start_ms, tz).tz_localize(None)
    wall = start_wall.floor("h")
    if wall < start_wall:
        wall += pd.Timedelta(hours=1)
    if wall.hour % 2 != 0:
        wall += pd.Timedelta(hours=1)

    ticks = []
    while True:
        tick = _epoch_ms(wall.tz_localize(tz, ambiguous=False, nonexistent="shift_forward"))
        if tick > end_ms:
            break
        if tick >= start_ms and (not ticks or tick > ticks[-1]):
            ticks.append(tick)
        wall += pd.Timedelta(hours=config.TICK_EVERY_HOURS)
    return ticks

def day_change_markers(points: pd.DataFrame, step_ms: int, tz=config.LOCAL_TIMEZONE) -> list[Marker]:
    markers = []
    if points.empty:
        return markers
    tz = _resolve_tz(tz)
    half_step = step_ms // 2
    last_day = points["day_key"].iloc[0]
    for ts, day_key in zip(points["timestamp"].iloc[1:], points["day_key"].iloc[1:]):
        if day_key != last_day:
            markers.append(Marker(x=int(ts) - half_step, label=format_day_line_label(_to_local(ts, tz))))
            last_day = day_key
    return markers

def now_marker(points: pd.DataFrame, now_ms: int) -> Optional[Marker]:
    if points.empty:
        return None
    first = int(points["timestamp"].iloc[0])
    last = int(points["timestamp"].iloc[-1])
    if now_ms < first or now_ms > last:
        return None
    return Marker(x=now_ms, label=config.NOW_LABEL)

def x_range(points: pd.DataFrame, step_ms: int) -> Optional[tuple[int, int]]:
    if points.empty:
        return None
    padding = step_ms // 2
    return int(points["timestamp"].iloc[0]) - padding, int(points["timestamp"].iloc[-1]) + padding

def bar_width(container_width: Optional[float], point_count: int) -> Optional[int]:
    """Pixel width per bar, or None to keep the plotting default."""
    if not container_width or not point_count:
        return None
    available = max(0, container_width - config.BAR_PADDING_PX)
    per_bar = available / point_count
    return max(1, math.floor(per_bar * config.BAR_FILL_RATIO))

def price_stats(points: pd.DataFrame) -> Optional[PriceStats]:
    if points.empty:
        return None
    values = points["price"].astype(float)
    return PriceStats(min=float(values.min()), max=float(values.max()), avg=float(values.mean()))

# ---------------------------------------------------------
# Full run
# ---------------------------------------------------------
def build_chart(records, options: Optional[ChartOptions] = None, now=None) -> ChartOutput:
    """
    Run the whole pipeline for one set of records and display options.
    `now` may be epoch ms (int or float), a datetime or a pandas Timestamp (naive
    values are read in the local time zone); defaults to the current time.
    """
    options = options or ChartOptions()
    tz = _resolve_tz(options.tz)
    now_ms = _to_epoch_ms(now, tz)

    points = normalize_records(records, options.use_tax, options.value_multiplier, tz)
    step_minutes = estimate_step_minutes(points)
    pph = points_per_hour(step_minutes)
    step_ms = step_minutes * MS_PER_MINUTE
    colored = color_by_day(points, pph)
    visible = filter_visible(colored, options.show_past, step_ms, now_ms)
    logging.debug(
        f"Chart: {len(points)} points, step {step_minutes} min, {len(visible)} visible"
    )

    ticks = axis_ticks(visible, tz)
    return ChartOutput(
        points=visible,
        step_minutes=step_minutes,
        points_per_hour=pph,
        step_ms=step_ms,
        tz=str(options.tz),
        axis_ticks=ticks,
        tick_labels=[format_hour_tick(t, tz) for t in ticks or []],
        day_markers=day_change_markers(visible, step_ms, tz),
        now_marker=now_marker(visible, now_ms),
        x_range=x_range(visible, step_ms),
        bar_width=bar_width(options.container_width, len(visible)),
        stats=price_stats(visible),
    )
