"""
Realtime ledger notifications.

Events are queued with ``transaction.on_commit`` so clients only ever hear
about changes that were actually committed. A rolled-back transaction sends
nothing, and a broadcast failure never touches the committed data.

Messages sent to the ``ledger`` group:
{
    "type": "stock.changed" | "invoice.updated" | "delivery.updated",
    "payload": {...}
}
"""
import json
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)

STOCK_CHANGED = 'stock.changed'
INVOICE_UPDATED = 'invoice.updated'
DELIVERY_UPDATED = 'delivery.updated'


def get_group_name():
    return getattr(settings, 'LEDGER_BROADCAST_GROUP', 'ledger')


def send_event(event_type, payload):
    """Send one event to the ledger group right away."""
    try:
        channel_layer = get_channel_layer()
        if channel_layer:
            # Round-trip through JSON so Decimals and datetimes go out as strings
            data = json.loads(json.dumps(payload, default=str))
            async_to_sync(channel_layer.group_send)(
                get_group_name(),
                {
                    'type': event_type,
                    'payload': data,
                }
            )
            logger.debug(f"Broadcasted {event_type} to WebSocket clients")
    except Exception as e:
        logger.error(f"Failed to broadcast {event_type}: {e}")


def publish(event_type, payload):
    """Queue an event for delivery once the current transaction commits."""
    transaction.on_commit(lambda: send_event(event_type, payload))


def stock_changed(products):
    # one entry per product, the latest instance wins
    latest = {product.id: product for product in products}
    publish(STOCK_CHANGED, {
        'products': [
            {
                'id': product.id,
                'code': product.code,
                'current_stock': product.current_stock,
                'stock_status': product.stock_status,
            }
            for product in latest.values()
        ]
    })


def invoice_updated(invoice):
    publish(INVOICE_UPDATED, {
        'id': invoice.id,
        'code': invoice.code,
        'total_amount': invoice.total_amount,
        'paid_amount': invoice.paid_amount,
        'remaining_amount': invoice.remaining_amount,
        'payment_status': invoice.payment_status,
    })


def delivery_updated(document):
    publish(DELIVERY_UPDATED, {
        'kind': document._meta.model_name,
        'id': document.id,
        'code': document.code,
        'invoice_id': document.invoice_id,
        'status': document.status,
    })
