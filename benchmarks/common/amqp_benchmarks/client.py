"""
AmqpClient - connection, channel and topology setup on top of pika's
asyncio adapter.

The client drives the setup chain

    connect -> open channel -> declare exchange -> declare exclusive queue
    -> select confirm mode -> on_topology_ready(channel, queue, ...)

and forwards broker confirmations and channel closes to whichever
listener is attached once publishing starts.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

import pika
import pika.exceptions
from pika.adapters.asyncio_connection import AsyncioConnection

from .config import LoadTestConfig
from .handler import ConnectionHandler

logger = logging.getLogger(__name__)

NORMAL_SHUTDOWN = 200


class ConfirmationListener(Protocol):
    def on_delivery_confirmation(self, method_frame): ...

    def on_channel_closed(self, channel, reason: Exception): ...


class AmqpClient:
    """Single connection, single channel publisher"""

    def __init__(
        self,
        config: LoadTestConfig,
        handler: ConnectionHandler,
        loop: asyncio.AbstractEventLoop,
        on_topology_ready: Callable,
        connection_factory: Callable = AsyncioConnection,
    ):
        self.config = config
        self.handler = handler
        self.loop = loop
        self.on_topology_ready = on_topology_ready
        self.connection_factory = connection_factory

        self.connection = None
        self.channel = None
        self.queue_name: str | None = None
        self.listener: ConfirmationListener | None = None
        self.topology_ready = False

    @property
    def is_open(self) -> bool:
        return self.connection is not None and self.connection.is_open

    def connect(self):
        """Start connecting; everything after this happens on the loop"""
        parameters = pika.URLParameters(self.config.connection_string)
        self.connection = self.connection_factory(
            parameters=parameters,
            on_open_callback=self._on_connection_open,
            on_open_error_callback=self._on_connection_open_error,
            on_close_callback=self._on_connection_closed,
            custom_ioloop=self.loop,
        )
        return self.connection

    def close(self):
        if self.connection is None:
            return
        if self.connection.is_closing or self.connection.is_closed:
            return
        self.connection.close()

    def _on_connection_open(self, connection):
        self.handler.on_connected(connection)
        connection.channel(on_open_callback=self._on_channel_open)

    def _on_connection_open_error(self, connection, error: Exception):
        self.handler.on_error(connection, str(error) or type(error).__name__)
        self.handler.on_detached(connection)
        self.loop.stop()

    def _on_connection_closed(self, connection, reason: Exception):
        clean = (
            isinstance(reason, pika.exceptions.ConnectionClosedByClient)
            and reason.reply_code == NORMAL_SHUTDOWN
        )
        if not clean:
            self.handler.on_error(connection, str(reason) or type(reason).__name__)
        self.handler.on_closed(connection)
        self.handler.on_detached(connection)
        self.channel = None
        # nothing left for the loop to wait on
        self.loop.stop()

    def _on_channel_open(self, channel):
        logger.debug("channel %s opened", channel.channel_number)
        self.channel = channel
        channel.add_on_close_callback(self._on_channel_closed)
        channel.exchange_declare(
            exchange=self.config.exchange,
            exchange_type=self.config.exchange_type,
            durable=self.config.durable_exchange,
            callback=self._on_exchange_declared,
        )

    def _on_channel_closed(self, channel, reason: Exception):
        logger.warning("channel %s closed: %s", channel.channel_number, reason)
        if isinstance(reason, pika.exceptions.ChannelClosedByBroker):
            self.handler.on_error(self.connection, f"{reason.reply_code}: {reason.reply_text}")
        if self.listener is not None:
            self.listener.on_channel_closed(channel, reason)
        if not self.topology_ready:
            # setup failed, the batch can never start
            self.close()

    def _on_exchange_declared(self, method_frame):
        logger.debug("declared exchange %s", self.config.exchange)
        self.channel.queue_declare(queue="", exclusive=True, callback=self._on_queue_declared)

    def _on_queue_declared(self, method_frame):
        method = method_frame.method
        self.queue_name = method.queue
        logger.info("declared queue %s", method.queue)
        self.channel.confirm_delivery(
            ack_nack_callback=self._on_delivery_confirmation,
            callback=lambda frame: self._on_confirm_selected(method),
        )

    def _on_confirm_selected(self, declare_ok):
        self.topology_ready = True
        self.handler.on_ready(self.connection)
        self.on_topology_ready(
            self.channel,
            declare_ok.queue,
            declare_ok.message_count,
            declare_ok.consumer_count,
        )

    def _on_delivery_confirmation(self, method_frame):
        if self.listener is None:
            logger.debug("Confirmation with no listener attached: %s", method_frame)
            return
        self.listener.on_delivery_confirmation(method_frame)
