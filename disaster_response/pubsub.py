"""Publish/subscribe channel between producers and WebSocket clients.

Producers (routes, the real-time poller) only call ``EventBus.publish``.
A single dispatcher task drains the queue into the ``ConnectionManager``.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

DISASTER_UPDATED = "disaster_updated"
RESOURCES_UPDATED = "resources_updated"
RESOURCE_DELETED = "resource_deleted"
REPORT_CREATED = "report_created"
REPORT_VERIFIED = "report_verified"
REPORT_DELETED = "report_deleted"
SOCIAL_MEDIA_UPDATED = "social_media_updated"
REALTIME_UPDATE = "realtime_update"
DISASTER_REALTIME_UPDATE = "disaster_realtime_update"


def topic_for(disaster_id: str) -> str:
    return f"disaster-{disaster_id}"


@dataclass
class Event:
    name: str
    data: Any
    # None means every connected client
    topic: Optional[str] = None

    def message(self) -> dict:
        return {"event": self.name, "data": self.data}


class ConnectionManager:
    def __init__(self):
        self.active: List[WebSocket] = []
        self.topics: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active.append(websocket)
        logger.info("Client connected (%d active)", len(self.active))

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active:
            self.active.remove(websocket)
        for topic in list(self.topics):
            self.topics[topic].discard(websocket)
            if not self.topics[topic]:
                del self.topics[topic]
        logger.info("Client disconnected (%d active)", len(self.active))

    def join(self, websocket: WebSocket, disaster_id: str):
        self.topics[topic_for(disaster_id)].add(websocket)
        logger.info("Client joined disaster %s", disaster_id)

    def leave(self, websocket: WebSocket, disaster_id: str):
        topic = topic_for(disaster_id)
        members = self.topics.get(topic)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.topics[topic]
        logger.info("Client left disaster %s", disaster_id)

    def subscribed_disasters(self) -> Set[str]:
        prefix = "disaster-"
        return {topic[len(prefix):] for topic, members in self.topics.items() if members}

    async def _send(self, targets, message: dict):
        dead = []
        for websocket in list(targets):
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.debug("Dropping dead websocket: %s", exc)
                dead.append(websocket)
        for websocket in dead:
            self.disconnect(websocket)

    async def broadcast(self, message: dict):
        await self._send(self.active, message)

    async def send_to_topic(self, topic: str, message: dict):
        await self._send(self.topics.get(topic, ()), message)

    async def deliver(self, event: Event):
        if event.topic is None:
            await self.broadcast(event.message())
        else:
            await self.send_to_topic(event.topic, event.message())


class EventBus:
    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self.queue: Optional["asyncio.Queue[Event]"] = None

    def start(self):
        # Created inside the running loop; each app startup gets a fresh queue
        self.queue = asyncio.Queue()

    def publish(self, name: str, data: Any, topic: Optional[str] = None):
        if self.queue is None:
            logger.debug("Event bus not started, dropping %s", name)
            return
        self.queue.put_nowait(Event(name=name, data=data, topic=topic))

    def publish_to_disaster(self, name: str, data: Any, disaster_id: str):
        self.publish(name, data, topic=topic_for(disaster_id))

    async def dispatch_forever(self):
        while True:
            event = await self.queue.get()
            try:
                await self.manager.deliver(event)
            except Exception:
                logger.exception("Failed to deliver %s", event.name)
            finally:
                self.queue.task_done()
