# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Kafka consumers of the capping worker.

A capping computation runs several sensitivity analyses per stage and can take much longer than the poll interval
of a kafka consumer. The command consumer is therefore paused while a computation runs and polled through heartbeat()
to keep its group membership alive. Pausing in confluent_kafka works on topic-partitions, so the consumer tracks its
assignment in the rebalance callbacks and pauses the partitions it gets assigned while paused.

The cancel consumer never pauses. It uses a group of its own per worker instance so every worker sees every cancel
command and it is drained with consume() between iterations.
"""

from logging import getLogger

from beartype.typing import Optional
from confluent_kafka import Consumer, Message, TopicPartition
from logbook import Logger

logger = Logger(__name__)


class LongRunningKafkaConsumer:
    """A single topic consumer that can be paused while a long computation handles the last polled message."""

    def __init__(
        self,
        topic: str,
        group_id: str,
        bootstrap_servers: str,
        client_id: str,
        max_poll_interval_ms: int = 1_800_000,
        auto_offset_reset: str = "earliest",
        kafka_auth_config: Optional[dict] = None,
    ) -> None:
        """Subscribe to a topic.

        Parameters
        ----------
        topic : str
            The only topic of the consumer
        group_id : str
            The consumer group
        bootstrap_servers : str
            The kafka brokers, e.g. "localhost:9092"
        client_id : str
            The client id, shows up in the broker logs
        max_poll_interval_ms : int
            The time after which the broker drops a consumer that did not poll. heartbeat() counts as a poll.
        auto_offset_reset : str
            Where to start reading when the group has no committed offset. The cancel consumer uses "latest" to skip
            cancel commands of computations that ended long ago.
        kafka_auth_config : Optional[dict]
            Extra consumer settings for authentication, merged into the configuration
        """
        self.topic = topic
        self.client_id = client_id
        config = {
            "bootstrap.servers": bootstrap_servers,
            "group.id": group_id,
            "client.id": client_id,
            "auto.offset.reset": auto_offset_reset,
            "enable.auto.commit": False,
            "max.poll.interval.ms": max_poll_interval_ms,
            "log_level": 2,
        }
        config.update(kafka_auth_config or {})
        self.consumer = Consumer(config, logger=getLogger(f"capping_consumer_{client_id}"))
        self.assignment: list[TopicPartition] = []
        self.is_paused = False
        self.last_msg: Optional[Message] = None
        self.consumer.subscribe(
            [topic],
            on_assign=lambda _consumer, partitions: self._on_assignment_change(added=partitions),
            on_revoke=lambda _consumer, partitions: self._on_assignment_change(removed=partitions),
            on_lost=lambda _consumer, partitions: self._on_assignment_change(removed=partitions),
        )

    def _on_assignment_change(
        self,
        added: Optional[list[TopicPartition]] = None,
        removed: Optional[list[TopicPartition]] = None,
    ) -> None:
        """Track the assigned partitions and apply the paused state to all of them"""
        self.assignment = [tp for tp in self.assignment if tp not in (removed or [])] + list(added or [])
        if self.is_paused:
            self.consumer.pause(self.assignment)
        else:
            self.consumer.resume(self.assignment)

    def _check_no_pending_message(self) -> None:
        if self.last_msg is not None:
            raise RuntimeError("The last polled message has not been committed yet, call commit or stop_processing")

    def poll(self, timeout: float | int) -> Optional[Message]:
        """Poll a single message without committing it.

        The message is committed through commit() or stop_processing(), so a worker crashing while it computes leaves
        the command for the next worker.
        """
        self._check_no_pending_message()
        self.last_msg = self.consumer.poll(timeout=float(timeout))
        return self.last_msg

    def consume(self, timeout: float | int, num_messages: int) -> list[Message]:
        """Read up to num_messages messages and commit them right away.

        Parameters
        ----------
        timeout : float | int
            The maximum wait in seconds
        num_messages : int
            The maximum number of messages to return

        Returns
        -------
        list[Message]
            The messages, empty if none arrived within the timeout
        """
        self._check_no_pending_message()
        messages = self.consumer.consume(num_messages=num_messages, timeout=float(timeout))
        if messages:
            self.consumer.commit(message=messages[-1], asynchronous=True)
        return messages

    def commit(self) -> None:
        """Commit the last polled message"""
        if self.last_msg is None:
            raise RuntimeError("No message to commit")
        self.consumer.commit(message=self.last_msg, asynchronous=False)
        self.last_msg = None

    def start_processing(self) -> None:
        """Pause the consumer while the last polled message is processed. Call heartbeat() regularly until done."""
        self.is_paused = True
        self._on_assignment_change()

    def heartbeat(self) -> None:
        """Poll the paused consumer to reset the max poll interval"""
        if not self.is_paused:
            raise RuntimeError("heartbeat is only allowed between start_processing and stop_processing")
        self._on_assignment_change()
        if self.consumer.poll(timeout=0) is not None:
            raise RuntimeError("A paused consumer returned a message")

    def stop_processing(self) -> None:
        """Resume the consumer and commit the processed message"""
        self.is_paused = False
        self._on_assignment_change()
        if self.last_msg is not None:
            self.commit()

    def close(self) -> None:
        """Commit the last polled message, if any, and leave the group"""
        if self.last_msg is not None:
            self.commit()
        self.consumer.close()
