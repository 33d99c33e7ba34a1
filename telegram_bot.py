# ---------------- TELEGRAM BOT ----------------
import asyncio
import logging

from telegram import Update
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    ApplicationBuilder,
    CommandHandler,
    MessageHandler,
    ContextTypes,
    filters
)

# ---------------- IMPORTS ----------------
from charts import render_png
from expense_core import CHART_CAPTION, HELP_MESSAGE, find_intent

logger = logging.getLogger(__name__)


# ---------------- REPLIES ----------------
async def send_reply(message, response, chart_backend="quickchart"):
    """Send a reply dict from expense_core: text first, then the chart if any."""
    text = response["message"]
    parse_mode = ParseMode.MARKDOWN if response.get("parse_mode") == "Markdown" else None

    try:
        await message.reply_text(text, parse_mode=parse_mode)
    except BadRequest as e:
        # categories with "_" or "*" break legacy Markdown
        logger.warning("Markdown rejected (%s), resending as plain text", e)
        await message.reply_text(text)

    series = response.get("series")
    if chart_backend == "local" and series:
        labels, values = series
        png = await asyncio.to_thread(render_png, labels, values)
        await message.reply_photo(photo=png, caption=CHART_CAPTION)
    elif response.get("chart"):
        await message.reply_photo(photo=response["chart"], caption=CHART_CAPTION)


async def process_text(update: Update, context: ContextTypes.DEFAULT_TYPE, text):
    bot_data = context.bot_data
    chat_id = update.effective_chat.id

    result = await asyncio.to_thread(
        find_intent,
        chat_id,
        text,
        bot_data["store"],
        bot_data.get("chart_service"),
        bot_data.get("scope_by_sender", True),
        bot_data.get("tz"),
    )

    try:
        await send_reply(update.message, result["response"], bot_data.get("chart_backend", "quickchart"))
    except TelegramError as e:
        logger.error("❌ Could not reply to chat %s: %s", chat_id, e)


# ---------------- COMMAND HANDLERS ----------------
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handles /start command."""
    await update.message.reply_text(HELP_MESSAGE)


async def resumen(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handles /resumen command."""
    await process_text(update, context, "resumen")


# ---------------- MESSAGE HANDLER ----------------
async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Main handler for normal text messages."""
    await process_text(update, context, update.message.text or "")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error("❌ Error handling update %s", update, exc_info=context.error)


# ---------------- APPLICATION ----------------
def build_application(settings, store, chart_service=None):
    app = ApplicationBuilder().token(settings.telegram_token).build()

    app.bot_data.update({
        "store": store,
        "chart_service": chart_service,
        "chart_backend": settings.chart_backend,
        "scope_by_sender": settings.scope_by_sender,
        "tz": settings.tz,
    })

    # Register handlers
    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("help", start))
    app.add_handler(CommandHandler("resumen", resumen))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
    app.add_error_handler(error_handler)
    return app


# ---------------- MAIN ENTRY POINT ----------------
def run(settings, store, chart_service=None, polling=False):
    """Start the Telegram bot as a webhook server (default) or by polling."""
    app = build_application(settings, store, chart_service)

    if polling:
        logger.info("🚀 Telegram bot polling. Press Ctrl+C to stop.")
        app.run_polling(allowed_updates=Update.ALL_TYPES)
        return

    logger.info("🚀 Telegram webhook listening on port %s", settings.port)
    app.run_webhook(
        listen="0.0.0.0",
        port=settings.port,
        url_path=settings.telegram_token,
        webhook_url=settings.webhook_url,
        allowed_updates=Update.ALL_TYPES,
    )
