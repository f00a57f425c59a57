"""
WebSocket consumers for real-time ledger updates.

Broadcast-only: clients connect to ws://host/ws/ledger/ and receive every
committed stock, invoice and delivery change.
"""
import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer

from .broadcast import DELIVERY_UPDATED, INVOICE_UPDATED, STOCK_CHANGED, get_group_name

logger = logging.getLogger(__name__)


class LedgerConsumer(AsyncWebsocketConsumer):
    """
    Messages sent to clients:
    {
        "type": "stock.changed" | "invoice.updated" | "delivery.updated",
        "payload": {...}
    }
    """

    async def connect(self):
        self.group_name = get_group_name()

        if self.channel_layer:
            await self.channel_layer.group_add(
                self.group_name,
                self.channel_name
            )
        else:
            logger.warning("Channel layer is None, WebSocket will work but no group messaging")

        await self.accept()

    async def disconnect(self, close_code):
        if self.channel_layer and hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(
                self.group_name,
                self.channel_name
            )

    async def receive(self, text_data=None, bytes_data=None):
        # Clients only listen.
        pass

    async def _forward(self, event_type, event):
        await self.send(text_data=json.dumps({
            'type': event_type,
            'payload': event['payload']
        }))

    async def stock_changed(self, event):
        await self._forward(STOCK_CHANGED, event)

    async def invoice_updated(self, event):
        await self._forward(INVOICE_UPDATED, event)

    async def delivery_updated(self, event):
        await self._forward(DELIVERY_UPDATED, event)
