"""
Core Services for Plugins

Provides the publish/subscribe bus plugins use to push topics back into
the host.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List

from .plugin_interfaces import PluginMessage, PluginResponse


TopicHandler = Callable[[PluginMessage], Awaitable[Any]]

WILDCARD_TOPIC = "*"


class PublishBus:
    """Topic-based publish/subscribe bus shared by the host and its plugins"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.subscribers: Dict[str, List[TopicHandler]] = {}

    def subscribe(self, topic: str, handler: TopicHandler):
        """
        Register a handler for a topic.

        Args:
            topic: Topic name, or '*' to receive every topic
            handler: Async function that takes a PluginMessage
        """
        self.subscribers.setdefault(topic, []).append(handler)
        self.logger.debug(f"Subscribed handler to topic {topic}")

    def unsubscribe(self, topic: str, handler: TopicHandler):
        """Remove a handler from a topic"""
        if topic in self.subscribers:
            try:
                self.subscribers[topic].remove(handler)
                self.logger.debug(f"Unsubscribed handler from topic {topic}")
            except ValueError:
                pass
            if not self.subscribers[topic]:
                del self.subscribers[topic]

    def get_topics(self) -> List[str]:
        return sorted(self.subscribers)

    async def publish(self, source_plugin: str, topic: str,
                      payload: Any) -> List[PluginResponse]:
        """
        Publish a payload on a topic.

        Subscriber failures are logged and reported as failed responses;
        they are never raised to the publisher.

        Args:
            source_plugin: Name of the publishing plugin
            topic: Topic name
            payload: Message data

        Returns:
            List of responses from subscribers
        """
        message = PluginMessage(
            topic=topic,
            source_plugin=source_plugin,
            data=payload
        )

        handlers = list(self.subscribers.get(topic, []))
        if topic != WILDCARD_TOPIC:
            handlers.extend(self.subscribers.get(WILDCARD_TOPIC, []))

        if not handlers:
            self.logger.debug(f"No subscribers for topic {topic} from {source_plugin}")
            return []

        responses = []
        for handler in handlers:
            try:
                result = await handler(message)
                responses.append(PluginResponse(
                    request_id=message.id,
                    success=True,
                    data=result,
                    metadata={'topic': topic}
                ))
            except Exception as e:
                self.logger.error(f"Error delivering topic {topic} from {source_plugin}: {e}")
                responses.append(PluginResponse(
                    request_id=message.id,
                    success=False,
                    error=str(e),
                    metadata={'topic': topic}
                ))

        return responses

    def clear(self):
        self.subscribers.clear()
