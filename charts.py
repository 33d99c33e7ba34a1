# ----------------- Chart Rendering -----------------
import io
import json
import logging
from urllib.parse import quote

import requests
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

logger = logging.getLogger(__name__)

# ---------------- CONFIG ----------------
QUICKCHART_URL = "https://quickchart.io"
CHART_TITLE = "Gastos por categoría"
CHART_STYLE = "seaborn-v0_8-whitegrid"
# Telegram rejects photo URLs much longer than this
MAX_URL_LENGTH = 2000

# styles write process-wide rcParams; set once at import
plt.style.use(CHART_STYLE if CHART_STYLE in plt.style.available else "default")


def bar_chart_config(labels, values, title=CHART_TITLE):
    """Chart.js bar chart document understood by QuickChart."""
    return {
        "type": "bar",
        "data": {
            "labels": list(labels),
            "datasets": [{"label": title, "data": list(values)}],
        },
        "options": {
            "title": {"display": True, "text": title},
            "legend": {"display": False},
        },
    }


class QuickChartService:
    """Turns a category -> total series into an image URL."""

    def __init__(self, base_url=QUICKCHART_URL, width=500, height=300, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.width = width
        self.height = height
        self.timeout = timeout

    def chart_url(self, labels, values, title=CHART_TITLE):
        config = bar_chart_config(labels, values, title)
        encoded = quote(json.dumps(config, separators=(",", ":"), ensure_ascii=False))
        url = f"{self.base_url}/chart?c={encoded}&w={self.width}&h={self.height}"
        if len(url) <= MAX_URL_LENGTH:
            return url
        return self.short_url(config)

    def short_url(self, config):
        """Register a long chart with the service and return its short URL."""
        response = requests.post(
            f"{self.base_url}/chart/create",
            json={"chart": config, "width": self.width, "height": self.height},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not data.get("success") or not data.get("url"):
            raise ValueError(f"Unexpected chart service response: {data}")
        return data["url"]


# ---------------- LOCAL RENDERING ----------------
def render_png(labels, values, title=CHART_TITLE) -> bytes:
    """
    Draw the same bar chart with matplotlib and return PNG bytes.

    Uses a standalone Figure rather than pyplot, so worker threads can render
    concurrently without sharing pyplot's current-figure state.
    """
    fig = Figure(figsize=(8, 5))
    ax = fig.subplots()
    bars = ax.bar(list(labels), list(values), color="#4C72B0")
    ax.set_title(title)
    ax.set_ylabel("Total")
    for bar, value in zip(bars, values):
        ax.annotate(f"{value:.2f}", (bar.get_x() + bar.get_width() / 2, bar.get_height()),
                    ha="center", va="bottom", fontsize=9)
    for label in ax.get_xticklabels():
        label.set_rotation(30)
        label.set_horizontalalignment("right")
    fig.tight_layout()

    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=120, facecolor="white")
    return buf.getvalue()


def build_chart_service(backend, base_url=QUICKCHART_URL):
    """Return the URL chart service for a CHART_BACKEND value, or None."""
    backend = (backend or "none").lower()
    if backend in ("quickchart", "local"):
        # "local" still needs URLs for transports that cannot upload bytes
        return QuickChartService(base_url)
    if backend == "none":
        return None
    raise ValueError(f"Unknown chart backend: {backend}")
