# app.py
import datetime as dt
import streamlit as st
import config
import price_sources
from chart_data import ChartOptions, build_chart
from plot_functions import build_price_figure

SELECTION_DEFAULTS = {
    "region": config.DEFAULT_REGION,
    "resolution_label": "Tunti",
    "tax_label": "ALV",
    "show_past": False,
    "chart_width": config.DEFAULT_CHART_WIDTH,
}


def _ensure_selection_defaults() -> None:
    """Populate session state with the default page selections when missing."""
    for key, value in SELECTION_DEFAULTS.items():
        if key not in st.session_state:
            st.session_state[key] = value

# ---------------------------------------------------------
# Page config
# ---------------------------------------------------------
st.set_page_config(page_title="Pörssisähkön hinta", page_icon="⚡", layout="wide")
st.title("⚡ Pörssisähkön hinta")
st.caption(
    "Lähde: spot-hinta.fi. Vihreä = päivän 6 edullisinta tuntia, keltainen = seuraavat 6, "
    "punainen = kalleimmat."
)
_ensure_selection_defaults()
# ---------------------------------------------------------
# Controls
# ---------------------------------------------------------
col_region, col_res, col_tax = st.columns(3)
with col_region:
    st.selectbox("Alue", config.REGION_OPTIONS, key="region")
with col_res:
    st.radio("Tyyppi", list(config.RESOLUTION_OPTIONS.keys()), horizontal=True, key="resolution_label")
with col_tax:
    st.radio("Verotus", list(config.TAX_OPTIONS.keys()), horizontal=True, key="tax_label")
st.checkbox("Näytä menneisyys", key="show_past")
with st.sidebar:
    st.header("Näkymä")
    st.number_input(
        "Kaavion leveys (px)",
        min_value=200,
        max_value=3000,
        step=50,
        key="chart_width",
    )
    if st.button("Päivitä hinnat", use_container_width=True):
        st.cache_data.clear()
# ---------------------------------------------------------
# Load prices
# ---------------------------------------------------------
@st.cache_data(ttl=config.CACHE_SECONDS)
def load_prices(region: str, price_resolution: str) -> list:
    return price_sources.load_spot_records(region=region, price_resolution=price_resolution)

price_resolution = config.RESOLUTION_OPTIONS[st.session_state.resolution_label]
try:
    with st.spinner("Ladataan hintoja..."):
        records = load_prices(st.session_state.region, price_resolution)
except price_sources.PriceDataError as exc:
    st.error(f"⚠️ {exc}")
    st.stop()
except Exception as exc:
    st.error(f"⚠️ Hintojen lataus epäonnistui: {exc}")
    st.stop()
# ---------------------------------------------------------
# Chart data
# ---------------------------------------------------------
options = ChartOptions(
    use_tax=config.TAX_OPTIONS[st.session_state.tax_label],
    value_multiplier=config.VALUE_MULTIPLIER,
    show_past=st.session_state.show_past,
    container_width=st.session_state.chart_width,
)
chart = build_chart(records, options, now=dt.datetime.now(config.TZ_LOCAL))

if chart.stats is not None:
    c1, c2, c3 = st.columns(3)
    c1.metric("Minimi", f"{chart.stats.min:.2f} snt")
    c2.metric("Keskiarvo", f"{chart.stats.avg:.2f} snt")
    c3.metric("Maksimi", f"{chart.stats.max:.2f} snt")

if chart.is_empty:
    st.info("Ei saatavilla")
else:
    fig = build_price_figure(chart, unit=config.UNIT, container_width=options.container_width)
    st.plotly_chart(fig, use_container_width=False)
    st.caption(
        f"Alue: {st.session_state.region} · Aikaväli: {chart.step_minutes} min · "
        f"{len(chart.points)} hintaa näkyvissä"
    )
st.caption(
    "Käytetty rajapinta: [spot-hinta.fi](https://spot-hinta.fi)"
)
