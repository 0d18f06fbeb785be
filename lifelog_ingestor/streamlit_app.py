"""Streamlit dashboard: lifelog stats, recent entries, unparsed queue, ingestion runs."""
import httpx
import pandas as pd
import streamlit as st

from lifelog_ingestor.db import init_store
from lifelog_ingestor.utils.config import settings
from lifelog_ingestor.utils.observability import compute_stats, detect_anomalies, get_ingestion_run_summary

st.set_page_config(page_title="Lifelog Ingestor", layout="wide")
st.title("Limitless Lifelog Ingestor")

try:
    store = init_store(settings)
    stats = compute_stats(store)
    runs = get_ingestion_run_summary(store, limit=50)
    anomalies = detect_anomalies(runs)
except Exception as e:
    st.error(f"Could not load lifelog data: {e}")
    st.stop()

# Metrics row
col1, col2, col3, col4 = st.columns(4)
with col1:
    st.metric("Total lifelogs", stats.total)
with col2:
    st.metric("Parsed", stats.parsed)
with col3:
    st.metric("Unparsed", stats.unparsed)
with col4:
    st.metric("Latest entry", stats.latest.strftime("%Y-%m-%d %H:%M") if stats.latest else "—")

if st.button("Run ingestion now"):
    try:
        resp = httpx.post(f"{settings.dashboard_api_url}/api/ingest", json={}, timeout=10.0)
        if resp.status_code == 202:
            st.success("Ingestion started. Refresh in a moment to see new entries.")
        elif resp.status_code == 409:
            st.info("An ingestion run is already in progress.")
        else:
            st.warning(f"Ingestion request returned {resp.status_code}: {resp.text}")
    except httpx.HTTPError as e:
        st.error(f"Could not reach the API at {settings.dashboard_api_url}: {e}")

st.subheader("Recent lifelogs")
page_size = st.selectbox("Entries per page", [10, 20, 50], index=1)
page = st.number_input("Page", min_value=1, value=1, step=1)
entries = store.list_records(limit=page_size, offset=(page - 1) * page_size)
if entries:
    st.dataframe(
        [
            {
                "id": e.id,
                "title": e.title,
                "created_at": e.created_at.isoformat(),
                "parsed": e.parsed,
            }
            for e in entries
        ],
        use_container_width=True,
    )
    with st.expander("Show markdown of the newest entry on this page"):
        st.markdown(entries[0].markdown or "_No content_")
else:
    st.info("No lifelogs yet. Trigger an ingestion to fetch data.")

st.subheader("Unparsed queue")
unparsed = store.list_unparsed()
if unparsed:
    st.dataframe([{"id": e.id, "title": e.title, "created_at": e.created_at.isoformat()} for e in unparsed[:100]], use_container_width=True)
else:
    st.success("Every stored lifelog has been parsed.")

# Ingestion latency (simple chart)
if runs and any(r.get("latency_seconds") for r in runs):
    st.subheader("Ingestion latency")
    df = pd.DataFrame([{"run_id": r["run_id"][:8], "latency_seconds": r.get("latency_seconds") or 0} for r in runs])
    st.bar_chart(df.set_index("run_id")["latency_seconds"], height=220)

st.subheader("Recent ingestion runs")
if runs:
    st.dataframe(runs, use_container_width=True)
else:
    st.info("No ingestion runs recorded yet.")

st.subheader("Anomalies")
if anomalies:
    st.table(anomalies)
else:
    st.success("No anomalies detected.")

st.caption(f"Data from {settings.db_type} store at {settings.db_path}.")
