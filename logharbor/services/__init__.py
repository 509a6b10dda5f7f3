from logharbor.services.broadcaster import Broadcaster
from logharbor.services.indexer import Indexer
from logharbor.services.kafka_client import KafkaLogConsumer, KafkaLogPublisher, QueueMessage
from logharbor.services.sessions import SessionRegistry, SessionState, ViewerSession
from logharbor.services.transport import TransportClosed, WebSocketTransport

__all__ = [
    "Broadcaster",
    "Indexer",
    "KafkaLogConsumer",
    "KafkaLogPublisher",
    "QueueMessage",
    "SessionRegistry",
    "SessionState",
    "TransportClosed",
    "ViewerSession",
    "WebSocketTransport",
]
