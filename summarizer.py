# ----------------- Expense Summarizer -----------------
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CURRENCY = "$"
CENTS = Decimal("0.01")

NO_EXPENSES_MESSAGE = "Aún no tienes gastos registrados."
REPORT_TITLE = "📊 *Resumen de tus gastos:*"

PERIOD_TITLES = {
    "today": "📊 *Resumen de tus gastos de hoy:*",
    "week": "📊 *Resumen de tus gastos de los últimos 7 días:*",
    "month": "📊 *Resumen de tus gastos de este mes:*",
}


# ---------------- HELPERS ----------------
def format_amount(value) -> str:
    """Two decimals, half-up rounding, currency prefix: 150 -> "$150.00"."""
    return f"{CURRENCY}{Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)}"


def display_category(name: str) -> str:
    return name[:1].upper() + name[1:]


# ---------------- AGGREGATION ----------------
def totals_by_category(records) -> dict:
    """Sum amounts per lower-cased category, sorted by category name."""
    totals = defaultdict(Decimal)
    for record in records:
        totals[record.category.strip().lower()] += Decimal(record.amount)
    return {name: totals[name] for name in sorted(totals)}


def grand_total(records) -> Decimal:
    return sum((Decimal(r.amount) for r in records), Decimal("0"))


def chart_series(totals: dict):
    """Labels and values ready for a bar chart."""
    labels = [display_category(name) for name in totals]
    values = [float(total.quantize(CENTS, rounding=ROUND_HALF_UP)) for total in totals.values()]
    return labels, values


def format_report(totals: dict, total: Decimal, period=None) -> str:
    if not totals:
        return NO_EXPENSES_MESSAGE

    lines = [PERIOD_TITLES.get(period, REPORT_TITLE)]
    for name, amount in totals.items():
        lines.append(f"• {display_category(name)}: *{format_amount(amount)}*")
    lines.append("")
    lines.append(f"*Total Gasto: {format_amount(total)}*")
    return "\n".join(lines)


def build_report(records, period=None) -> str:
    records = list(records)
    return format_report(totals_by_category(records), grand_total(records), period)


# ---------------- SUMMARY ----------------
@dataclass
class Summary:
    totals: dict
    total: Decimal
    report: str
    labels: list
    values: list

    @property
    def empty(self):
        return not self.totals


def summarize(records, period=None) -> Summary:
    """Aggregate a user's expenses into totals, a text report and a chart series."""
    records = list(records)
    totals = totals_by_category(records)
    total = grand_total(records)
    labels, values = chart_series(totals)
    return Summary(
        totals=totals,
        total=total,
        report=format_report(totals, total, period),
        labels=labels,
        values=values,
    )
