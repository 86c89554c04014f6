import json
import logging
import time
from typing import Any, Dict

import pika
import pika.exceptions

from .config import settings

logger = logging.getLogger(__name__)


class TaskEvents:
    CREATED = "task.created"
    UPDATED = "task.updated"
    COMPLETED = "task.completed"
    DELETED = "task.deleted"


class RabbitMQPublisher:
    """RabbitMQ publisher for task events"""

    def __init__(
        self,
        host: str = "rabbitmq",
        port: int = 5672,
        user: str = "admin",
        password: str = "admin123",
        exchange: str = "task_exchange",
        enabled: bool = True,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.exchange = exchange
        self.enabled = enabled
        self.connection = None
        self.channel = None

    def connect(self, max_retries: int = 1, retry_delay: int = 5) -> bool:
        """Establish connection to RabbitMQ with retries"""
        if not self.enabled:
            return False

        for attempt in range(max_retries):
            try:
                credentials = pika.PlainCredentials(self.user, self.password)
                parameters = pika.ConnectionParameters(
                    host=self.host,
                    port=self.port,
                    credentials=credentials,
                    heartbeat=600,
                    blocked_connection_timeout=300,
                )

                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()
                self.channel.exchange_declare(
                    exchange=self.exchange,
                    exchange_type='topic',
                    durable=True
                )

                logger.info(f"Connected to RabbitMQ at {self.host}:{self.port}")
                return True

            except pika.exceptions.AMQPConnectionError as e:
                logger.warning(f"RabbitMQ connection attempt {attempt + 1}/{max_retries} failed: {e}")
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)

        logger.error("Failed to connect to RabbitMQ")
        return False

    def publish_event(self, event_type: str, data: Dict[str, Any]) -> bool:
        """Publish event to RabbitMQ. Failures are logged, never raised."""
        if not self.enabled:
            return False

        if not self.connection or self.connection.is_closed:
            if not self.connect():
                logger.warning(f"Dropping {event_type} event - no connection")
                return False

        try:
            message = {
                'event_type': event_type,
                'data': data
            }

            self.channel.basic_publish(
                exchange=self.exchange,
                routing_key=event_type,
                body=json.dumps(message, default=str),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Persistent
                    content_type='application/json'
                )
            )

            logger.info(f"Published {event_type} event to RabbitMQ")
            return True

        except pika.exceptions.AMQPError as e:
            logger.error(f"Error publishing {event_type} event: {e}")
            self.connection = None
            return False

    def close(self):
        """Close connection"""
        try:
            if self.connection and not self.connection.is_closed:
                self.connection.close()
                logger.info("RabbitMQ connection closed")
        except pika.exceptions.AMQPError as e:
            logger.error(f"Error closing connection: {e}")
        finally:
            self.connection = None
            self.channel = None


# Global publisher instance
rabbitmq_publisher = RabbitMQPublisher(
    host=settings.rabbitmq_host,
    port=settings.rabbitmq_port,
    user=settings.rabbitmq_user,
    password=settings.rabbitmq_password,
    exchange=settings.events_exchange,
    enabled=settings.events_enabled,
)
