import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from config import settings
from errors import DeliveryFailure

logger = logging.getLogger(__name__)


def build_message(title: str, body: str, **target: str) -> Dict[str, Any]:
    return {"notification": {"title": title, "body": body}, **target}


class PushGateway(ABC):
    """Device push delivery: direct sends by token and topic broadcasts."""

    @abstractmethod
    async def send_to_token(self, token: str, title: str, body: str) -> None:
        """Deliver to one device. Raises DeliveryFailure when it cannot."""

    @abstractmethod
    async def send_to_topic(self, topic: str, title: str, body: str) -> None:
        """Deliver to every device subscribed to ``topic``."""

    @abstractmethod
    async def subscribe(self, token: str, topic: str) -> None:
        pass

    @abstractmethod
    async def unsubscribe(self, token: str, topic: str) -> None:
        pass


class WebSocketPushGateway(PushGateway):
    """Delivers pushes to devices connected on /ws/devices/{token}."""

    def __init__(self):
        self.device_connections: Dict[str, List[WebSocket]] = {}
        self.topic_tokens: Dict[str, Set[str]] = defaultdict(set)

    async def connect(self, token: str, websocket: WebSocket):
        await websocket.accept()
        self.device_connections.setdefault(token, []).append(websocket)

    def disconnect(self, token: str, websocket: WebSocket):
        conns = self.device_connections.get(token, [])
        if websocket in conns:
            conns.remove(websocket)
        if not conns and token in self.device_connections:
            del self.device_connections[token]

    async def _deliver(self, token: str, message: Dict[str, Any]) -> int:
        delivered = 0
        for ws in list(self.device_connections.get(token, [])):
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception:
                self.disconnect(token, ws)
        return delivered

    async def send_to_token(self, token: str, title: str, body: str) -> None:
        if not await self._deliver(token, build_message(title, body, token=token)):
            raise DeliveryFailure(f"No device connected for token {token[:8]}")

    async def send_to_topic(self, topic: str, title: str, body: str) -> None:
        message = build_message(title, body, topic=topic)
        for token in list(self.topic_tokens.get(topic, ())):
            await self._deliver(token, message)

    async def subscribe(self, token: str, topic: str) -> None:
        self.topic_tokens[topic].add(token)

    async def unsubscribe(self, token: str, topic: str) -> None:
        tokens = self.topic_tokens.get(topic)
        if tokens is None:
            return
        tokens.discard(token)
        if not tokens:
            del self.topic_tokens[topic]


class MemoryPushGateway(PushGateway):
    """In-memory gateway that records every push (for testing/development)"""

    def __init__(self, failing_tokens: Optional[Set[str]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.topic_tokens: Dict[str, Set[str]] = defaultdict(set)
        self.failing_tokens = set(failing_tokens or ())

    async def send_to_token(self, token: str, title: str, body: str) -> None:
        if token in self.failing_tokens:
            raise DeliveryFailure(f"Device {token} unreachable")
        self.sent.append(build_message(title, body, token=token))

    async def send_to_topic(self, topic: str, title: str, body: str) -> None:
        self.sent.append(build_message(title, body, topic=topic))

    async def subscribe(self, token: str, topic: str) -> None:
        self.topic_tokens[topic].add(token)

    async def unsubscribe(self, token: str, topic: str) -> None:
        self.topic_tokens[topic].discard(token)

    def sent_to(self, token: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("token") == token]

    def sent_to_topic(self, topic: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("topic") == topic]


_gateway: Optional[PushGateway] = None


def get_push_gateway() -> PushGateway:
    global _gateway
    if _gateway is None:
        if settings.PUSH_BACKEND == "websocket":
            _gateway = WebSocketPushGateway()
        elif settings.PUSH_BACKEND == "memory":
            _gateway = MemoryPushGateway()
        else:
            raise ValueError(f"Unknown push backend: {settings.PUSH_BACKEND}")
        logger.info("Push gateway initialized: %s", type(_gateway).__name__)
    return _gateway
