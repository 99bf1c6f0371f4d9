"""Session event publisher module for pub/sub event publishing."""

import logging
from typing import Any, Optional

from pubsub import pub

from ..models.events import LiveUpdate, SessionEvent

logger = logging.getLogger(__name__)

SESSION_EVENTS_TOPIC = "session_events"
LIVE_TRANSCRIPT_TOPIC = "live_transcript"


class SessionEventPublisher:
    """Publishes session lifecycle events and live transcript updates using pubsub.pub."""

    def __init__(self, topic: str = SESSION_EVENTS_TOPIC, live_topic: str = LIVE_TRANSCRIPT_TOPIC):
        """Initialize session event publisher.

        Args:
            topic: Pub/sub topic name for lifecycle events
            live_topic: Pub/sub topic name for live transcript updates
        """
        self.topic = topic
        self.live_topic = live_topic
        logger.info(f"SessionEventPublisher initialized with topics: {topic}, {live_topic}")

    def publish(self, event_type: str, session_id: str, reason: Optional[str] = None, **metadata: Any) -> SessionEvent:
        """Publish a lifecycle event and return it.

        A listener that raises is logged; the event still counts as
        published so the session keeps moving.
        """
        event = SessionEvent(event_type=event_type, session_id=session_id, reason=reason, metadata=metadata)
        try:
            pub.sendMessage(self.topic, event=event)
        except Exception as e:
            logger.error(f"Listener failed on {event_type} event for {session_id}: {e}", exc_info=True)
        else:
            logger.debug(f"Published session event: {event_type} ({session_id})")
        return event

    def publish_live(self, update: LiveUpdate) -> None:
        try:
            pub.sendMessage(self.live_topic, update=update)
        except Exception as e:
            logger.error(f"Listener failed on live update: {e}", exc_info=True)
