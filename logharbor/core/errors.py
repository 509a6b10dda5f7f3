class StartupError(Exception):
    """Raised when a required backend (Kafka, Elasticsearch) is unreachable at startup."""
