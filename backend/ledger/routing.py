"""
WebSocket URL routing for the ledger app.
"""
from django.urls import re_path
from . import consumers

websocket_urlpatterns = [
    re_path(r'^ws/ledger/$', consumers.LedgerConsumer.as_asgi()),
]
