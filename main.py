# ---------------- GASTOS BOT ENTRY POINT ----------------
import argparse
import logging
import sys

from charts import build_chart_service
from config import ConfigError, load_settings, setup_logging
from store import open_store

logger = logging.getLogger("gastos_bot")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="gastos-bot", description="Expense tracking chat bot")
    sub = parser.add_subparsers(dest="platform", required=True)

    telegram = sub.add_parser("telegram", help="run the Telegram bot")
    telegram.add_argument("--polling", action="store_true", help="poll for updates instead of serving a webhook")

    whatsapp = sub.add_parser("whatsapp", help="run the Twilio WhatsApp webhook")
    whatsapp.add_argument("--ngrok", action="store_true", help="expose the webhook through an ngrok tunnel")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    use_webhook = not getattr(args, "polling", False)

    try:
        settings = load_settings(args.platform, use_webhook=use_webhook)
        store = open_store(settings.database_url, settings.mongo_db_name, settings.mongo_timeout_ms)
        chart_service = build_chart_service(settings.chart_backend, settings.quickchart_url)
    except (ConfigError, ValueError) as e:
        setup_logging()
        logger.error("%s", e)
        return 1

    setup_logging(settings.log_level)
    store.on_state_change(
        lambda old, new: logger.info("Store connection: %s -> %s", old.value, new.value)
    )
    store.connect()

    try:
        if args.platform == "telegram":
            import telegram_bot

            telegram_bot.run(settings, store, chart_service, polling=args.polling)
        else:
            import whatsapp_bot

            whatsapp_bot.run(settings, store, chart_service, use_ngrok=args.ngrok)
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
