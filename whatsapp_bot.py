# ---------------- WHATSAPP BOT (Flask + Twilio) ----------------
import logging

from flask import Flask, Response, current_app, jsonify, request
from twilio.twiml.messaging_response import MessagingResponse

# ---------------- IMPORTS ----------------
from expense_core import UNEXPECTED_ERROR_MESSAGE, find_intent

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/whatsapp"


def twiml_reply(text, media_url=None):
    """Render a TwiML document answering the incoming message."""
    resp = MessagingResponse()
    msg = resp.message(text)
    if media_url:
        msg.media(media_url)
    return Response(str(resp), mimetype="application/xml")


# ---------------- FLASK APP ----------------
def create_app(store, chart_service=None, scope_by_sender=True, tz=None):
    app = Flask(__name__)
    app.config.update(
        EXPENSE_STORE=store,
        CHART_SERVICE=chart_service,
        SCOPE_BY_SENDER=scope_by_sender,
        TIMEZONE=tz,
    )

    @app.route(WEBHOOK_PATH, methods=["POST"])
    def whatsapp_webhook():
        """Handle incoming WhatsApp messages from Twilio."""
        incoming_msg = request.values.get("Body", "").strip()
        user_number = request.values.get("From")  # e.g. whatsapp:+123456789

        try:
            result = find_intent(
                user_number,
                incoming_msg,
                current_app.config["EXPENSE_STORE"],
                current_app.config["CHART_SERVICE"],
                current_app.config["SCOPE_BY_SENDER"],
                current_app.config["TIMEZONE"],
            )
            response = result["response"]
            return twiml_reply(response["message"], response.get("chart"))
        except Exception:
            # Twilio must always get a TwiML document back
            logger.exception("❌ Error handling WhatsApp message from %s", user_number)
            return twiml_reply(UNEXPECTED_ERROR_MESSAGE)

    @app.route("/health", methods=["GET"])
    def health():
        state = current_app.config["EXPENSE_STORE"].state
        return jsonify({"status": "ok", "store": state.value})

    return app


# ---------------- STARTUP ----------------
def run(settings, store, chart_service=None, use_ngrok=False):
    """Start the Flask webhook, optionally behind an ngrok tunnel."""
    app = create_app(store, chart_service, settings.scope_by_sender, settings.tz)

    public_url = settings.public_url
    if use_ngrok:
        from pyngrok import ngrok

        public_url = ngrok.connect(settings.port).public_url

    if public_url:
        logger.info("🌍 Public URL: %s", public_url)
        logger.info("🔗 Your Webhook URL (use in Twilio): %s%s", public_url.rstrip("/"), WEBHOOK_PATH)

    logger.info("🚀 WhatsApp bot running on port %s", settings.port)
    app.run(host="0.0.0.0", port=settings.port)
