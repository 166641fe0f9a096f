import copy
import logging
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go

import config
from chart_data import ChartOutput


def _local_naive(ms, tz: str) -> pd.Timestamp:
    """Epoch ms -> naive local wall-clock time, the form the date axis expects."""
    return pd.Timestamp(int(ms), unit="ms", tz="UTC").tz_convert(tz).tz_localize(None)


def merge_trace_args(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dicts merge key by key; any other override value replaces the base one."""
    merged = copy.deepcopy(base or {})
    for key, value in (override or {}).items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = merge_trace_args(merged[key], value)
        else:
            merged[key] = value
    return merged


def _marker_shape(x: pd.Timestamp, color: str, dash: Optional[str] = None) -> go.layout.Shape:
    line = dict(color=color, width=1)
    if dash:
        line["dash"] = dash
    return go.layout.Shape(type="line", x0=x, x1=x, y0=0, y1=1, yref="paper", line=line)


def _marker_label(x: pd.Timestamp, text: str, color: str) -> go.layout.Annotation:
    return go.layout.Annotation(
        x=x, y=1, yref="paper", text=text, showarrow=False,
        yanchor="bottom", font=dict(size=10, color=color),
    )


def bar_width_in_axis_units(chart: ChartOutput, container_width: Optional[float]) -> Optional[float]:
    """
    Convert the pixel bar width of a chart into x-axis units (milliseconds).
    The x range is spread over the container width minus the bar padding.
    """
    if chart.bar_width is None or not container_width or chart.x_range is None:
        return None
    usable_px = max(1.0, container_width - config.BAR_PADDING_PX)
    ms_per_px = (chart.x_range[1] - chart.x_range[0]) / usable_px
    return chart.bar_width * ms_per_px


def build_price_figure(
    chart: ChartOutput,
    *,
    unit: str = config.UNIT,
    container_width: Optional[float] = None,
    bar_defaults: Optional[Dict[str, Any]] = None,
    height: int = 320,
) -> go.Figure:
    """
    Render a chart dataset as a Plotly bar chart.

    - One bar per visible point, colored by its daily tier; past bars faded.
    - A solid grey line with a weekday label at every day change.
    - A dashed "NOW" line when the current time is inside the visible range.
    - Ticks every second hour, x range padded by half a step on both sides.
    - `bar_defaults` deep-merges over the generated go.Bar arguments.
    """
    fig = go.Figure()
    if chart.is_empty:
        logging.debug("build_price_figure: nothing visible, returning empty figure")
        return fig

    points = chart.points
    x = [_local_naive(ts, chart.tz) for ts in points["timestamp"]]
    opacity = np.where(points["is_past"].to_numpy(dtype=bool), config.PAST_OPACITY, 1.0)

    bar_kwargs: Dict[str, Any] = dict(
        x=x,
        y=points["price"].tolist(),
        name="price",
        marker=dict(color=points["fill"].tolist(), opacity=opacity.tolist()),
        customdata=points["full_label"].tolist(),
        hovertemplate=f"%{{customdata}}<br>%{{y:.2f}} {unit}<extra></extra>",
    )
    width_ms = bar_width_in_axis_units(chart, container_width)
    if width_ms is not None:
        bar_kwargs["width"] = width_ms
    fig.add_trace(go.Bar(**merge_trace_args(bar_kwargs, bar_defaults or {})))

    # --- Vertical lines for day changes and now ---
    shapes: List[go.layout.Shape] = []
    annotations: List[go.layout.Annotation] = []
    for marker in chart.day_markers:
        x_marker = _local_naive(marker.x, chart.tz)
        shapes.append(_marker_shape(x_marker, config.DAY_LINE_COLOR))
        annotations.append(_marker_label(x_marker, marker.label, config.DAY_LINE_COLOR))
    if chart.now_marker is not None:
        x_now = _local_naive(chart.now_marker.x, chart.tz)
        shapes.append(_marker_shape(x_now, config.NOW_LINE_COLOR, dash="dash"))
        annotations.append(_marker_label(x_now, chart.now_marker.label, config.NOW_LINE_COLOR))

    xaxis = dict(
        type="date",
        range=[_local_naive(v, chart.tz) for v in chart.x_range],
        fixedrange=True,
        showgrid=False,
    )
    if chart.axis_ticks:
        xaxis["tickvals"] = [_local_naive(t, chart.tz) for t in chart.axis_ticks]
        xaxis["ticktext"] = chart.tick_labels

    fig.update_layout(
        height=height,
        margin=dict(l=8, r=8, t=24, b=8),
        bargap=0,
        showlegend=False,
        xaxis=xaxis,
        yaxis=dict(title=unit, griddash="dash", fixedrange=True),
        hoverlabel=dict(bgcolor="rgba(255,255,255,0.9)", namelength=-1),
        shapes=shapes,
        annotations=annotations,
    )
    if container_width:
        fig.update_layout(width=int(container_width))
    return fig
