"""Exchange, queue and binding declarations for the event channel.

Every primary queue carries a dead-letter exchange/routing key pair and,
optionally, a message TTL. Dead-letter queues are plain durable queues with no
further dead-lettering: messages stay there until an operator inspects or
replays them.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from memorix.domain.events import CardCreated, CardDeleted, DeckDeleted
from memorix.domain.exceptions import TopologyError

DIRECT = "direct"

CARD_EXCHANGE = CardCreated.exchange
DECK_EXCHANGE = DeckDeleted.exchange
CARD_DLX = "card.dlx"
DECK_DLX = "deck.dlx"

DEFAULT_MESSAGE_TTL_MS = 300_000


@dataclass(frozen=True)
class ExchangeSpec:
    name: str
    kind: str = DIRECT
    durable: bool = True


@dataclass(frozen=True)
class QueueSpec:
    name: str
    durable: bool = True
    dead_letter_exchange: Optional[str] = None
    dead_letter_routing_key: Optional[str] = None
    message_ttl_ms: Optional[int] = None

    def arguments(self) -> Dict[str, str]:
        args: Dict[str, str] = {"durable": "1" if self.durable else "0"}
        if self.dead_letter_exchange:
            args["x-dead-letter-exchange"] = self.dead_letter_exchange
        if self.dead_letter_routing_key:
            args["x-dead-letter-routing-key"] = self.dead_letter_routing_key
        if self.message_ttl_ms is not None:
            args["x-message-ttl"] = str(self.message_ttl_ms)
        return args

    def is_expired(self, published_at: int, now_ms: int) -> bool:
        if self.message_ttl_ms is None:
            return False
        return now_ms - published_at > self.message_ttl_ms


@dataclass(frozen=True)
class BindingSpec:
    queue: str
    exchange: str
    routing_key: str


@dataclass(frozen=True)
class Topology:
    exchanges: Tuple[ExchangeSpec, ...] = ()
    queues: Tuple[QueueSpec, ...] = ()
    bindings: Tuple[BindingSpec, ...] = ()
    _queues_by_name: Dict[str, QueueSpec] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_queues_by_name", {queue.name: queue for queue in self.queues}
        )
        self.validate()

    def validate(self) -> None:
        exchange_names = set()
        for exchange in self.exchanges:
            if exchange.kind != DIRECT:
                raise TopologyError(
                    f"exchange {exchange.name!r} has unsupported kind {exchange.kind!r}"
                )
            exchange_names.add(exchange.name)

        for binding in self.bindings:
            if binding.exchange not in exchange_names:
                raise TopologyError(
                    f"binding for {binding.queue!r} references unknown exchange {binding.exchange!r}"
                )
            if binding.queue not in self._queues_by_name:
                raise TopologyError(
                    f"binding references unknown queue {binding.queue!r}"
                )

        for queue in self.queues:
            if queue.dead_letter_exchange is None:
                continue
            if queue.dead_letter_exchange not in exchange_names:
                raise TopologyError(
                    f"queue {queue.name!r} dead-letters to unknown exchange {queue.dead_letter_exchange!r}"
                )
            if not self.route(queue.dead_letter_exchange, queue.dead_letter_routing_key or queue.name):
                raise TopologyError(f"dead letters of {queue.name!r} are unroutable")

    def queue(self, name: str) -> QueueSpec:
        try:
            return self._queues_by_name[name]
        except KeyError:
            raise TopologyError(f"queue {name!r} is not declared") from None

    def has_queue(self, name: str) -> bool:
        return name in self._queues_by_name

    def route(self, exchange: str, routing_key: str) -> List[str]:
        """Queues bound to ``exchange`` with exactly ``routing_key``."""
        return [
            binding.queue
            for binding in self.bindings
            if binding.exchange == exchange and binding.routing_key == routing_key
        ]

    def merge(self, other: "Topology") -> "Topology":
        def unique(items):
            return tuple(dict.fromkeys(items))

        queues: Dict[str, QueueSpec] = dict(self._queues_by_name)
        for queue in other.queues:
            existing = queues.get(queue.name)
            if existing is not None and existing != queue:
                raise TopologyError(
                    f"queue {queue.name!r} redeclared with different arguments"
                )
            queues[queue.name] = queue

        return Topology(
            exchanges=unique(self.exchanges + other.exchanges),
            queues=tuple(queues.values()),
            bindings=unique(self.bindings + other.bindings),
        )


def _primary_with_dlq(
    name: str, exchange: str, dlx: str, ttl_ms: Optional[int]
) -> Tuple[QueueSpec, QueueSpec, BindingSpec, BindingSpec]:
    dlq_name = f"{name}.dlq"
    primary = QueueSpec(
        name=name,
        dead_letter_exchange=dlx,
        dead_letter_routing_key=dlq_name,
        message_ttl_ms=ttl_ms,
    )
    dlq = QueueSpec(name=dlq_name)
    return (
        primary,
        dlq,
        BindingSpec(queue=name, exchange=exchange, routing_key=name),
        BindingSpec(queue=dlq_name, exchange=dlx, routing_key=dlq_name),
    )


def build_event_topology(
    message_ttl_ms: Optional[int] = DEFAULT_MESSAGE_TTL_MS,
    deck_deleted_ttl_ms: Optional[int] = DEFAULT_MESSAGE_TTL_MS,
) -> Topology:
    """Topology shared by both services.

    Each event type gets a primary queue named after its routing key, bound
    to the owning service's exchange, and a ``<queue>.dlq`` behind that
    service's dead-letter exchange.
    """
    queues: List[QueueSpec] = []
    bindings: List[BindingSpec] = []
    for name, exchange, dlx, ttl_ms in (
        (CardCreated.routing_key, CARD_EXCHANGE, CARD_DLX, message_ttl_ms),
        (CardDeleted.routing_key, CARD_EXCHANGE, CARD_DLX, message_ttl_ms),
        (DeckDeleted.routing_key, DECK_EXCHANGE, DECK_DLX, deck_deleted_ttl_ms),
    ):
        primary, dlq, binding, dlq_binding = _primary_with_dlq(name, exchange, dlx, ttl_ms)
        queues.extend([primary, dlq])
        bindings.extend([binding, dlq_binding])

    return Topology(
        exchanges=(
            ExchangeSpec(CARD_EXCHANGE),
            ExchangeSpec(DECK_EXCHANGE),
            ExchangeSpec(CARD_DLX),
            ExchangeSpec(DECK_DLX),
        ),
        queues=tuple(queues),
        bindings=tuple(bindings),
    )
