"""
Graph model of the purchase FSM and strategies that walk it.

Vertices are session states, edges are controller operations. A walker
drives a live PurchaseSession along a path chosen by a strategy and
notifies observers after every vertex and edge. The session itself
knows nothing about walkers or observers.
"""

import logging
import random
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from src.application.purchase_service import PurchaseSession
from src.domain.catalog import PaymentMethod, TicketType
from src.domain.exceptions import InvalidTransitionError, MaxRetriesExceededError
from src.domain.state_machine import (
    MAX_RETRY_COUNT,
    PAID_STATES,
    TICKETED_STATES,
    PurchaseState,
    PurchaseStateMachine,
)
from src.infrastructure.payment_gateway import PaymentGateway


logger = logging.getLogger(__name__)


class ModelObserver(Protocol):
    def on_vertex(self, state: PurchaseState, session: PurchaseSession) -> None:
        ...

    def on_edge(self, edge: "Edge", session: PurchaseSession) -> None:
        ...


@dataclass(frozen=True)
class Edge:
    name: str
    source: PurchaseState
    target: PurchaseState
    action: Callable[[PurchaseSession, random.Random], None]
    guard: Optional[Callable[[PurchaseSession], bool]] = None

    def enabled(self, session: PurchaseSession) -> bool:
        return self.guard is None or self.guard(session)


class InvariantViolation(AssertionError):
    pass


def _select_ticket(session: PurchaseSession, rng: random.Random) -> None:
    session.select_ticket_type(TicketType.random(rng))


def _choose_payment(session: PurchaseSession, rng: random.Random) -> None:
    session.choose_payment_method(PaymentMethod.random(rng))


def _exhaust_retries(session: PurchaseSession, rng: random.Random) -> None:
    try:
        session.retry_payment()
    except MaxRetriesExceededError:
        return
    raise InvariantViolation(
        f"retry_payment should have exhausted the retry budget (retry_count={session.retry_count})"
    )


def _call(operation: str) -> Callable[[PurchaseSession, random.Random], None]:
    def action(session: PurchaseSession, rng: random.Random) -> None:
        getattr(session, operation)()

    action.__name__ = operation
    return action


def _retries_left(session: PurchaseSession) -> bool:
    return session.retry_count < MAX_RETRY_COUNT


def _retries_spent(session: PurchaseSession) -> bool:
    return session.retry_count >= MAX_RETRY_COUNT


S = PurchaseState

PURCHASE_MODEL: Sequence[Edge] = (
    Edge("e_select_ticket", S.IDLE, S.TICKET_SELECTED, _select_ticket),
    Edge("e_choose_payment", S.TICKET_SELECTED, S.PAYMENT_METHOD_SELECTED, _choose_payment),
    Edge("e_initiate_payment", S.PAYMENT_METHOD_SELECTED, S.PAYMENT_PROCESSING,
         _call("initiate_payment_processing")),
    Edge("e_payment_succeeds", S.PAYMENT_PROCESSING, S.PAYMENT_SUCCESS,
         _call("complete_payment_with_success")),
    Edge("e_payment_fails", S.PAYMENT_PROCESSING, S.PAYMENT_FAILED,
         _call("complete_payment_with_failure")),
    Edge("e_retry_payment", S.PAYMENT_FAILED, S.PAYMENT_METHOD_SELECTED,
         _call("retry_payment"), guard=_retries_left),
    Edge("e_retries_exhausted", S.PAYMENT_FAILED, S.IDLE,
         _exhaust_retries, guard=_retries_spent),
    Edge("e_generate_qr", S.PAYMENT_SUCCESS, S.QR_GENERATED, _call("generate_qr_code")),
    Edge("e_validate_ticket", S.QR_GENERATED, S.TICKET_ACTIVE, _call("validate_ticket")),
    Edge("e_ticket_expires", S.TICKET_ACTIVE, S.TICKET_EXPIRED, _call("expire_ticket")),
    Edge("e_cancel_from_ticket_selected", S.TICKET_SELECTED, S.IDLE, _call("cancel_purchase")),
    Edge("e_cancel_from_payment_selected", S.PAYMENT_METHOD_SELECTED, S.IDLE,
         _call("cancel_purchase")),
    Edge("e_cancel_from_payment_failed", S.PAYMENT_FAILED, S.IDLE, _call("cancel_purchase")),
    Edge("e_reset", S.TICKET_EXPIRED, S.IDLE, _call("reset")),
)


class InvariantObserver:
    """Checks the extended-state invariants at every vertex."""

    def on_vertex(self, state: PurchaseState, session: PurchaseSession) -> None:
        if session.state is not state:
            raise InvariantViolation(f"expected state {state.value}, session is in {session.state.value}")

        if not 0 <= session.retry_count <= MAX_RETRY_COUNT:
            raise InvariantViolation(f"retry_count out of range: {session.retry_count}")

        if (session.selected_ticket_type is None) != (state is S.IDLE):
            raise InvariantViolation(f"selected_ticket_type presence wrong in {state.value}")

        if (session.transaction_id is not None) != (state in PAID_STATES):
            raise InvariantViolation(f"transaction_id presence wrong in {state.value}")

        ticket = session.current_ticket
        if (ticket is not None) != (state in TICKETED_STATES):
            raise InvariantViolation(f"current_ticket presence wrong in {state.value}")
        if ticket is not None and ticket.active != (state is S.TICKET_ACTIVE):
            raise InvariantViolation(f"ticket.active is {ticket.active} in {state.value}")

        if state is S.IDLE and session.retry_count != 0:
            raise InvariantViolation("retry_count must be 0 in IDLE")

    def on_edge(self, edge: Edge, session: PurchaseSession) -> None:
        if session.state is not edge.target:
            raise InvariantViolation(
                f"{edge.name} should lead to {edge.target.value}, got {session.state.value}"
            )


_SAMPLE_ARGS: Dict[str, tuple] = {
    "select_ticket_type": (TicketType.SINGLE,),
    "choose_payment_method": (PaymentMethod.CARD,),
}


class StateVerificationObserver:
    """
    Confirms the state reached after each edge by behaviour alone.

    Every operation that must be refused in the expected state is invoked
    on the live session. Refusals leave the session untouched, so the set
    of refused operations is a side-effect-free signature that tells each
    state apart from the others.
    """

    def __init__(self) -> None:
        self.verified = 0

    def on_vertex(self, state: PurchaseState, session: PurchaseSession) -> None:
        pass

    def on_edge(self, edge: Edge, session: PurchaseSession) -> None:
        expected = self.refused_operations(edge.target)
        for operation in sorted(expected):
            try:
                getattr(session, operation)(*_SAMPLE_ARGS.get(operation, ()))
            except InvalidTransitionError:
                continue
            raise InvariantViolation(
                f"{operation} was accepted after {edge.name}; "
                f"session is not in {edge.target.value}"
            )

        if session.state is not edge.target:
            raise InvariantViolation(
                f"refused calls moved the session from {edge.target.value} to {session.state.value}"
            )
        self.verified += 1

    @staticmethod
    def refused_operations(state: PurchaseState) -> set:
        return set(PurchaseStateMachine.operations()) - PurchaseStateMachine.get_allowed_operations(state)


class CoverageObserver:
    def __init__(self) -> None:
        self.vertex_visits: Counter = Counter()
        self.edge_visits: Counter = Counter()
        self.sequence: List[str] = []

    def on_vertex(self, state: PurchaseState, session: PurchaseSession) -> None:
        self.vertex_visits[state] += 1
        self.sequence.append(f"v_{state.value}")

    def on_edge(self, edge: Edge, session: PurchaseSession) -> None:
        self.edge_visits[edge.name] += 1
        self.sequence.append(edge.name)


@dataclass
class WalkReport:
    strategy: str
    steps: int
    edges_covered: int
    edges_total: int
    vertices_covered: int
    vertices_total: int
    path: List[str] = field(default_factory=list)

    @property
    def edge_coverage(self) -> float:
        return self.edges_covered / self.edges_total if self.edges_total else 1.0

    @property
    def vertex_coverage(self) -> float:
        return self.vertices_covered / self.vertices_total if self.vertices_total else 1.0


class ModelWalker:
    """
    Executes walk strategies over PURCHASE_MODEL against a live session.

    Successful payments go through the gateway, so the default session
    uses a gateway that always authorizes; declines are modelled by the
    e_payment_fails edge.
    """

    def __init__(
        self,
        session: Optional[PurchaseSession] = None,
        observers: Sequence[ModelObserver] = (),
        seed: Optional[int] = None,
        edges: Sequence[Edge] = PURCHASE_MODEL,
    ):
        self.rng = random.Random(seed)
        self.session = session or PurchaseSession(
            gateway=PaymentGateway(
                success_rate=1.0,
                rng=random.Random(seed),
                min_latency_ms=0,
                max_latency_ms=0,
            )
        )
        self.edges = tuple(edges)
        self.observers = list(observers)
        self._coverage = CoverageObserver()
        self.observers.append(self._coverage)
        self._outgoing: Dict[PurchaseState, List[Edge]] = {}
        for edge in self.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)

    @property
    def vertices(self) -> set:
        return {e.source for e in self.edges} | {e.target for e in self.edges}

    def random_walk(self, max_steps: int = 1000) -> WalkReport:
        """Random walk until every edge has been taken or max_steps is reached."""
        self._visit_vertex()
        steps = 0
        while not self._all_edges_covered() and steps < max_steps:
            choices = self._enabled_edges()
            if not choices:
                break
            self._take(self.rng.choice(choices))
            steps += 1
        return self._report("random_walk", steps)

    def transition_tour(self, max_steps: int = 1000) -> WalkReport:
        """Repeatedly follow the shortest path to the nearest uncovered edge."""
        self._visit_vertex()
        steps = 0
        while not self._all_edges_covered() and steps < max_steps:
            path = self._path_to_uncovered()
            if not path:
                break
            taken = 0
            for edge in path:
                if not edge.enabled(self.session):
                    break
                self._take(edge)
                taken += 1
            if not taken:
                break
            steps += taken
        return self._report("transition_tour", steps)

    def _take(self, edge: Edge) -> None:
        logger.debug("Taking edge %s from %s", edge.name, self.session.state.value)
        edge.action(self.session, self.rng)
        for observer in self.observers:
            observer.on_edge(edge, self.session)
        self._visit_vertex()

    def _visit_vertex(self) -> None:
        state = self.session.state
        for observer in self.observers:
            observer.on_vertex(state, self.session)

    def _enabled_edges(self) -> List[Edge]:
        return [
            e for e in self._outgoing.get(self.session.state, [])
            if e.enabled(self.session)
        ]

    def _all_edges_covered(self) -> bool:
        return all(self._coverage.edge_visits[e.name] for e in self.edges)

    def _path_to_uncovered(self) -> List[Edge]:
        # Guards depend on retry_count, so the search tracks it alongside the state.
        start = (self.session.state, self.session.retry_count)
        queue = deque([(start, [])])
        seen = {start}
        while queue:
            (state, retries), path = queue.popleft()
            for edge in self._outgoing.get(state, []):
                if not self._guard_allows(edge, retries):
                    continue
                if not self._coverage.edge_visits[edge.name]:
                    return path + [edge]
                node = (edge.target, self._retries_after(edge, retries))
                if node not in seen:
                    seen.add(node)
                    queue.append((node, path + [edge]))
        return []

    @staticmethod
    def _guard_allows(edge: Edge, retries: int) -> bool:
        if edge.guard is _retries_left:
            return retries < MAX_RETRY_COUNT
        if edge.guard is _retries_spent:
            return retries >= MAX_RETRY_COUNT
        return True

    @staticmethod
    def _retries_after(edge: Edge, retries: int) -> int:
        if edge.target in (S.IDLE, S.PAYMENT_SUCCESS):
            return 0
        if edge.name in ("e_payment_fails", "e_retry_payment"):
            return min(retries + 1, MAX_RETRY_COUNT)
        return retries

    def _report(self, strategy: str, steps: int) -> WalkReport:
        covered_edges = sum(1 for e in self.edges if self._coverage.edge_visits[e.name])
        vertices = self.vertices
        covered_vertices = sum(1 for v in vertices if self._coverage.vertex_visits[v])
        report = WalkReport(
            strategy=strategy,
            steps=steps,
            edges_covered=covered_edges,
            edges_total=len(self.edges),
            vertices_covered=covered_vertices,
            vertices_total=len(vertices),
            path=list(self._coverage.sequence),
        )
        logger.info(
            "%s finished: %s steps, edge coverage %.0f%%, vertex coverage %.0f%%",
            strategy,
            steps,
            report.edge_coverage * 100,
            report.vertex_coverage * 100,
        )
        return report

