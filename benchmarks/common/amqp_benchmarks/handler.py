"""
ConnectionHandler - lifecycle notifications for the broker connection.

The handler only reports. It never reconnects, retries or touches batch
state, so calling any hook any number of times is harmless.
"""

import logging

logger = logging.getLogger(__name__)


class ConnectionHandler:
    """Surfaces connection lifecycle events to the operator log"""

    def on_error(self, connection, message: str):
        """A connection-level fault (handshake, TLS, socket, broker close)"""
        logger.error("error: %s", message)

    def on_connected(self, connection):
        """The connection to the broker is established"""
        logger.info("connected")

    def on_ready(self, connection):
        """The connection is ready to publish: topology declared and confirms enabled"""
        logger.info("ready")

    def on_closed(self, connection):
        """The connection is closed"""
        logger.info("closed")

    def on_detached(self, connection):
        """The connection is no longer attached to the event loop"""
        logger.info("detached")
