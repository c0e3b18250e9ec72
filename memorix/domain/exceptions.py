class DomainException(Exception):
    pass


class MessagingException(DomainException):
    def __init__(self, message: str) -> None:
        super().__init__(f"Messaging error: {message}")


class TopologyError(MessagingException):
    def __init__(self, message: str) -> None:
        super().__init__(f"invalid topology: {message}")


class EventDeserializationError(DomainException):
    def __init__(self, routing_key: str, reason: str) -> None:
        super().__init__(f"Cannot decode event with routing key {routing_key!r}: {reason}")
        self.routing_key = routing_key
        self.reason = reason


class UnexpectedEventError(DomainException):
    def __init__(self, event_type: str, consumer: str) -> None:
        super().__init__(f"{consumer} does not handle {event_type} events")
        self.event_type = event_type
        self.consumer = consumer
