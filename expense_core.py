# ----------------- Expense Intent Router -----------------
import logging
from datetime import datetime, timedelta, timezone

from commands import RecordExpense, Summarize, Unknown, parse_command
from store import ExpenseRecord, StoreUnavailableError
from summarizer import NO_EXPENSES_MESSAGE, format_amount, summarize

logger = logging.getLogger(__name__)

# ---------------- REPLIES ----------------
HELP_MESSAGE = (
    "👋 ¡Hola! Soy tu bot de finanzas.\n\n"
    "Puedes enviarme:\n\n"
    "• \"gasto [cantidad] [categoría]\" (ej. \"gasto 150 comida\") para registrar un gasto.\n"
    "• \"resumen\" para ver tus gastos totales por categoría "
    "(también \"resumen hoy\", \"resumen semana\" o \"resumen mes\")."
)
STARTING_UP_MESSAGE = "⌛️ Estoy arrancando... Por favor, espera un momento y vuelve a enviar tu mensaje."
DB_LOST_MESSAGE = (
    "❌ Lo siento, la conexión con la base de datos se perdió temporalmente. "
    "Por favor, intenta de nuevo en unos segundos."
)
BAD_FORMAT_MESSAGE = (
    "⚠️ No reconocí el formato del gasto. Usa \"gasto [cantidad] [categoría]\", "
    "por ejemplo \"gasto 20.50 transporte\"."
)
UNEXPECTED_ERROR_MESSAGE = (
    "❌ Lo siento, hubo un error inesperado al procesar tu solicitud. "
    "Por favor, intenta de nuevo más tarde."
)
CHART_CAPTION = "📊 Gastos por categoría"


def reply(message, chart=None, parse_mode=None, series=None):
    return {"message": message, "chart": chart, "parse_mode": parse_mode, "series": series}


# ---------------- PERIODS ----------------
def period_range(period, now=None, tz=None):
    """Return (since, until) for a summary period; (None, None) means everything."""
    tz = tz or timezone.utc
    now = (now or datetime.now(timezone.utc)).astimezone(tz)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "today":
        return midnight, midnight + timedelta(days=1)
    if period == "week":
        return now - timedelta(days=7), None
    if period == "month":
        return midnight.replace(day=1), None
    return None, None


# ---------------- INTENT HANDLERS ----------------
def handle_expense(sender_id, command, store, scope_by_sender=True):
    try:
        record = ExpenseRecord(
            amount=command.amount,
            category=command.category,
            sender_id=sender_id if scope_by_sender else None,
        )
    except ValueError as e:
        logger.info("Rejected expense from %s: %s", sender_id, e)
        return reply(BAD_FORMAT_MESSAGE)
    store.add_expense(record)
    logger.info("Gasto registrado: %s - %s (sender=%s)", record.amount, record.category, sender_id)
    return reply(
        f"✅ Gasto de *{format_amount(record.amount)}* en \"{record.category}\" registrado con éxito.",
        parse_mode="Markdown",
    )


def handle_summary(sender_id, command, store, chart_service=None, scope_by_sender=True, tz=None):
    since, until = period_range(command.period, tz=tz)
    records = store.find_expenses(
        sender_id=sender_id if scope_by_sender else None,
        since=since,
        until=until,
    )
    summary = summarize(records, period=command.period)
    if summary.empty:
        return reply(NO_EXPENSES_MESSAGE)

    chart = None
    if chart_service is not None:
        try:
            chart = chart_service.chart_url(summary.labels, summary.values)
        except Exception as e:
            # send the report without the image
            logger.warning("Chart rendering failed: %s", e)

    logger.info("Resumen de gastos enviado a %s (%d categorías)", sender_id, len(summary.totals))
    return reply(summary.report, chart=chart, parse_mode="Markdown",
                 series=(summary.labels, summary.values))


def handle_user_intent(sender_id, command, store, chart_service=None, scope_by_sender=True, tz=None):
    if isinstance(command, RecordExpense):
        return handle_expense(sender_id, command, store, scope_by_sender)

    elif isinstance(command, Summarize):
        return handle_summary(sender_id, command, store, chart_service, scope_by_sender, tz)

    elif isinstance(command, Unknown) and command.reason == "bad_format":
        return reply(BAD_FORMAT_MESSAGE)

    return reply(HELP_MESSAGE)


# ---------------- MAIN INTENT ROUTER ----------------
def find_intent(sender_id, message, store, chart_service=None, scope_by_sender=True, tz=None):
    """
    Handle one inbound chat message and describe the reply.

    Returns {"intent": str, "response": {"message", "chart", "parse_mode", "series"}}.
    Never raises: store outages and unexpected errors become user-facing replies.
    """
    sender_id = str(sender_id) if sender_id is not None else None
    logger.info("Mensaje recibido de %s: %r", sender_id, message)

    # 1️⃣ Store must be up before anything touches it
    if not store.is_connected:
        logger.warning("Store not connected (%s), asking %s to retry", store.state.value, sender_id)
        return {"intent": "unavailable", "response": reply(STARTING_UP_MESSAGE)}

    intent = "unknown"
    try:
        # 2️⃣ Classify
        command = parse_command(message)
        intent = command.intent

        # 3️⃣ Route to proper handler
        response = handle_user_intent(sender_id, command, store, chart_service, scope_by_sender, tz)
    except StoreUnavailableError as e:
        logger.error("Store unavailable while handling %s: %s", intent, e)
        response = reply(DB_LOST_MESSAGE)
    except Exception:
        logger.exception("Error al procesar el mensaje de %s", sender_id)
        response = reply(UNEXPECTED_ERROR_MESSAGE)

    return {"intent": intent, "response": response}
