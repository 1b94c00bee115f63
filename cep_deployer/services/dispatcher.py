"""
Broker publishers for deploy/undeploy notifications to the CEP engine.

Every publish opens its own connection, makes sure both well-known queues
exist, sends one message and tears the connection down again. Nothing is
confirmed back by the consumer: a publish that leaves the client without
a transport error counts as delivered.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

import paho.mqtt.client as mqtt
import pika
import pika.exceptions

from ..core.config import Settings, settings as default_settings
from ..core.errors import DispatchUnavailable
from .lifecycle import DEPLOY_QUEUE, UNDEPLOY_QUEUE, Message

QUEUES = (DEPLOY_QUEUE, UNDEPLOY_QUEUE)

_logger = logging.getLogger("dispatcher")


class MessageDispatcher:
    transport = "base"

    def publish_deploy(self, content: str) -> None:
        self.publish(DEPLOY_QUEUE, content)

    def publish_undeploy(self, name: str) -> None:
        self.publish(UNDEPLOY_QUEUE, name)

    def send(self, message: Message) -> None:
        if message.queue == DEPLOY_QUEUE:
            self.publish_deploy(message.body)
        elif message.queue == UNDEPLOY_QUEUE:
            self.publish_undeploy(message.body)
        else:
            raise ValueError(f"Unknown queue: {message.queue!r}")

    def publish(self, queue: str, body: str) -> None:
        raise NotImplementedError


class LogDispatcher(MessageDispatcher):
    """Logs messages instead of sending them. Development only."""

    transport = "log"

    def publish(self, queue: str, body: str) -> None:
        _logger.info("Log dispatch queue=%s body_len=%s", queue, len(body))


class AmqpDispatcher(MessageDispatcher):
    """Publishes to the default exchange with the queue name as routing key."""

    transport = "amqp"

    def __init__(self, url: str, *, timeout_sec: float = 5.0) -> None:
        self.url = url
        self.timeout_sec = timeout_sec

    def _parameters(self) -> pika.URLParameters:
        params = pika.URLParameters(self.url)
        params.connection_attempts = 1
        params.socket_timeout = self.timeout_sec
        params.stack_timeout = self.timeout_sec
        params.blocked_connection_timeout = self.timeout_sec
        return params

    def publish(self, queue: str, body: str) -> None:
        connection: Optional[pika.BlockingConnection] = None
        try:
            connection = pika.BlockingConnection(self._parameters())
            channel = connection.channel()
            for name in QUEUES:
                channel.queue_declare(queue=name, durable=False, exclusive=False, auto_delete=False)
            channel.basic_publish(exchange="", routing_key=queue, body=body.encode("utf-8"))
        except (pika.exceptions.AMQPError, OSError) as exc:
            _logger.warning("AMQP publish failed queue=%s: %s", queue, exc)
            raise DispatchUnavailable(f"AMQP publish to {queue!r} failed: {exc}", queue=queue) from exc
        finally:
            if connection is not None and connection.is_open:
                try:
                    connection.close()
                except (pika.exceptions.AMQPError, OSError) as exc:
                    _logger.debug("AMQP close failed: %s", exc)
        _logger.debug("AMQP published queue=%s body_len=%s", queue, len(body))


class MqttDispatcher(MessageDispatcher):
    """Publishes to ``<prefix><queue>`` topics at QoS 1 (at-least-once)."""

    transport = "mqtt"

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        topic_prefix: str = "",
        timeout_sec: float = 5.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.topic_prefix = topic_prefix
        self.timeout_sec = timeout_sec

    def topic_for(self, queue: str) -> str:
        return f"{self.topic_prefix}{queue}"

    def _client(self) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"cep-deployer-{uuid.uuid4().hex[:12]}",
        )
        client.connect_timeout = self.timeout_sec
        if self.username:
            client.username_pw_set(self.username, self.password)
        return client

    def publish(self, queue: str, body: str) -> None:
        topic = self.topic_for(queue)
        client = self._client()
        started = False
        try:
            client.connect(self.host, self.port, keepalive=30)
            client.loop_start()
            started = True
            info = client.publish(topic, body.encode("utf-8"), qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise DispatchUnavailable(f"MQTT publish to {topic!r} rejected rc={info.rc}", queue=queue)
            info.wait_for_publish(timeout=self.timeout_sec)
            if not info.is_published():
                raise DispatchUnavailable(f"MQTT publish to {topic!r} timed out", queue=queue)
        except (OSError, RuntimeError, ValueError) as exc:
            _logger.warning("MQTT publish failed topic=%s: %s", topic, exc)
            raise DispatchUnavailable(f"MQTT publish to {topic!r} failed: {exc}", queue=queue) from exc
        finally:
            if started:
                client.disconnect()
                client.loop_stop()
        _logger.debug("MQTT published topic=%s body_len=%s", topic, len(body))


def build_dispatcher(cfg: Settings | None = None) -> MessageDispatcher:
    cfg = cfg or default_settings
    transport = (cfg.broker_transport or "amqp").strip().lower()
    if transport == "amqp":
        return AmqpDispatcher(cfg.amqp_url, timeout_sec=cfg.broker_timeout_sec)
    if transport == "mqtt":
        return MqttDispatcher(
            cfg.mqtt_broker_host,
            cfg.mqtt_broker_port,
            username=cfg.mqtt_username,
            password=cfg.mqtt_password,
            topic_prefix=cfg.mqtt_topic_prefix,
            timeout_sec=cfg.broker_timeout_sec,
        )
    if transport == "log":
        return LogDispatcher()
    raise ValueError(f"Unknown broker transport: {cfg.broker_transport!r}")
