import json, threading, smtplib
from email.mime.text import MIMEText
from kafka import KafkaConsumer
from loguru import logger
from storefront.core.config import settings

_stop = threading.Event()
_thread = None

def send_email(to: str, subject: str, body: str):
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as s:
        s.sendmail(settings.FROM_EMAIL, [to], msg.as_string())

def _money(amount, currency=None) -> str:
    return f"{int(amount or 0):,} {currency or settings.CURRENCY}"

def _order_created(ev: dict):
    lines = "\n".join(
        f"  - {it['name']}{' (' + it['variant'] + ')' if it.get('variant') else ''} x{it['quantity']}: "
        f"{_money(it['subtotal'], ev.get('currency'))}"
        for it in ev.get("items", [])
    )
    return (f"Order {ev['order_number']} received",
            f"Hi {ev.get('customer_name') or ''},\n\nWe received your order {ev['order_number']}.\n\n"
            f"{lines}\n\nDiscount: {_money(ev.get('discount'), ev.get('currency'))}\n"
            f"Total: {_money(ev.get('amount'), ev.get('currency'))}\n"
            f"Payment: {ev.get('payment_method')}\n")

def _order_cancelled(ev: dict):
    return (f"Order {ev['order_number']} cancelled",
            f"Your order {ev['order_number']} has been cancelled.")

def _status_changed(ev: dict):
    return (f"Order {ev['order_number']} is now {ev.get('status')}",
            f"Your order {ev['order_number']} changed from {ev.get('previous_status')} to {ev.get('status')}.")

def _payment_succeeded(ev: dict):
    return (f"Payment received for {ev['order_number']}",
            f"We received {_money(ev.get('amount'), ev.get('currency'))} for order {ev['order_number']}.")

def _order_refunded(ev: dict):
    return (f"Refund for {ev['order_number']}",
            f"A refund of {_money(ev.get('refund_amount'), ev.get('currency'))} was issued "
            f"for order {ev['order_number']}.")

TEMPLATES = {
    "order.created": _order_created,
    "order.cancelled": _order_cancelled,
    "order.status_changed": _status_changed,
    "payment.succeeded": _payment_succeeded,
    "order.refunded": _order_refunded,
}

def render(ev: dict):
    template = TEMPLATES.get(ev.get("type"))
    return template(ev) if template else None

def handle(ev: dict):
    rendered = render(ev)
    to = ev.get("user_email")
    if not rendered or not to:
        return
    subject, body = rendered
    send_email(to, subject, body)
    logger.info(f"sent '{ev['type']}' mail for order {ev.get('order_number')} to {to}")

def _run():
    consumer = KafkaConsumer(
        settings.TOPIC_ORDER_EVENTS,
        bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
        group_id="storefront-notifications",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
        enable_auto_commit=True,
        auto_offset_reset="earliest",
    )
    try:
        for msg in consumer:
            if _stop.is_set():
                break
            try:
                handle(msg.value)
            except (smtplib.SMTPException, OSError) as e:
                logger.error(f"mail for {msg.value.get('type')} {msg.value.get('order_id')} failed: {e}")
    finally:
        consumer.close()

def start():
    global _thread
    if not settings.KAFKA_ENABLED:
        logger.info("kafka disabled, notifications consumer not started")
        return
    if _thread and _thread.is_alive():
        return
    _stop.clear()
    _thread = threading.Thread(target=_run, daemon=True)
    _thread.start()

def stop():
    _stop.set()
