# ----------------- Command Interpreter -----------------
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

# ---------------- CONFIG ----------------
INTENT_CLASSES = [
    "record_expense",
    "summarize",
    "unknown",
]

SUMMARY_PHRASES = ("resumen", "mis gastos")

# "resumen <period>" -> period key understood by expense_core
SUMMARY_PERIODS = {
    "resumen hoy": "today",
    "resumen semana": "week",
    "resumen mes": "month",
}

# amounts up to 999,999,999,999.99; the category runs to the end of the first line
EXPENSE_PATTERN = re.compile(
    r"^(gasto|gasté|gastos?)\s+([0-9]{1,12}(\.[0-9]{1,2})?)\s+(.+)$",
    re.IGNORECASE | re.MULTILINE,
)
KEYWORD_PREFIX = re.compile(r"^(gasto|gasté|gastos?)(\s|$)", re.IGNORECASE)


# ---------------- INTENTS ----------------
@dataclass(frozen=True)
class RecordExpense:
    amount: Decimal
    category: str
    intent: str = "record_expense"


@dataclass(frozen=True)
class Summarize:
    period: Optional[str] = None
    intent: str = "summarize"


@dataclass(frozen=True)
class Unknown:
    # "bad_format" when the text looked like an expense but did not parse
    reason: Optional[str] = None
    intent: str = "unknown"


Command = Union[RecordExpense, Summarize, Unknown]


# ---------------- PARSER ----------------
def normalize(text) -> str:
    """Collapse None / whitespace-only input to an empty string."""
    return (text or "").strip()


def parse_command(text) -> Command:
    """
    Classify an incoming chat message.

    Examples:
        "gasto 150 comida"      -> RecordExpense(Decimal("150"), "comida")
        "Gasté 20.5 Taxi aeropuerto" -> RecordExpense(Decimal("20.5"), "Taxi aeropuerto")
        "resumen"               -> Summarize()
        "gasto mucho"           -> Unknown(reason="bad_format")
        "hola"                  -> Unknown()
    """
    message = normalize(text)
    if not message:
        return Unknown()

    lowered = message.lower()
    if lowered in SUMMARY_PHRASES:
        return Summarize()
    if lowered in SUMMARY_PERIODS:
        return Summarize(period=SUMMARY_PERIODS[lowered])

    match = EXPENSE_PATTERN.match(message)
    if match:
        category = match.group(4).strip()
        if category:
            return RecordExpense(amount=Decimal(match.group(2)), category=category)

    if KEYWORD_PREFIX.match(message):
        return Unknown(reason="bad_format")
    return Unknown()
