"""Funnel transition function.

Pure: takes the graph, a snapshot of the conversation and an inbound event,
returns the next snapshot. Persistence lives in state_service.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from funnelbot.schemas.funnel import START_NODE_ID, FunnelGraph, FunnelNode


class TransitionOutcome(str, Enum):
    ENTERED = "entered"
    MOVED = "moved"
    COMPLETED = "completed"
    HELD = "held"
    IGNORED = "ignored"
    RESTARTED = "restarted"
    INACTIVE = "inactive"


# outcomes after which the entered node's content is sent to the counterpart
REPLY_OUTCOMES = {
    TransitionOutcome.ENTERED,
    TransitionOutcome.MOVED,
    TransitionOutcome.COMPLETED,
    TransitionOutcome.RESTARTED,
}


@dataclass(frozen=True)
class StateSnapshot:
    current_node_id: str = START_NODE_ID
    waiting_for_reply: bool = False
    completed_funnel: bool = False
    variables: dict[str, Any] = field(default_factory=dict)
    revision: int = 0

    @property
    def is_first_contact(self) -> bool:
        return self.revision == 0


@dataclass(frozen=True)
class InboundEvent:
    text: str = ""
    matched_handle: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)
    restart: bool = False


@dataclass(frozen=True)
class TransitionDecision:
    outcome: TransitionOutcome
    state: StateSnapshot
    node: Optional[FunnelNode] = None
    stale_node: bool = False

    @property
    def changed(self) -> bool:
        return self.outcome not in (TransitionOutcome.IGNORED, TransitionOutcome.INACTIVE)


def merge_variables(current: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Last write per key wins."""
    if not incoming:
        return dict(current)
    return {**current, **incoming}


def find_edge_target(node: FunnelNode, matched_handle: Optional[str]) -> Optional[str]:
    if matched_handle is None:
        return None
    for edge in node.outgoing:
        if edge.handle == matched_handle:
            return edge.target
    return None


def _enter(state: StateSnapshot, node: FunnelNode, variables: dict[str, Any]) -> StateSnapshot:
    return replace(
        state,
        current_node_id=node.id,
        waiting_for_reply=False,
        completed_funnel=node.is_terminal,
        variables=variables,
    )


def compute_transition(
    graph: Optional[FunnelGraph],
    state: StateSnapshot,
    event: InboundEvent,
) -> TransitionDecision:
    """Next state for one inbound event.

    * no graph or inactive graph: state untouched
    * restart directive: back to the start node, flags cleared
    * first contact: enter the start node without consuming a handle
    * completed funnel: pass-through
    * matching edge: move to its target, completing on an end node
    * anything else: hold the current node and wait for a reply
    """
    if graph is None or not graph.is_active:
        return TransitionDecision(TransitionOutcome.INACTIVE, state)

    start = graph.node(START_NODE_ID)

    if event.restart:
        variables = merge_variables(state.variables, event.variables)
        if start is None:
            return TransitionDecision(TransitionOutcome.INACTIVE, state)
        return TransitionDecision(TransitionOutcome.RESTARTED, _enter(state, start, variables), node=start)

    if state.completed_funnel:
        return TransitionDecision(TransitionOutcome.IGNORED, state)

    variables = merge_variables(state.variables, event.variables)

    if state.is_first_contact and start is not None:
        return TransitionDecision(TransitionOutcome.ENTERED, _enter(state, start, variables), node=start)

    current = graph.node(state.current_node_id)
    if current is None:
        held = replace(state, waiting_for_reply=True, variables=variables)
        return TransitionDecision(TransitionOutcome.HELD, held, stale_node=True)

    target_id = find_edge_target(current, event.matched_handle)
    target = graph.node(target_id) if target_id is not None else None
    if target is None:
        held = replace(state, waiting_for_reply=True, variables=variables)
        return TransitionDecision(TransitionOutcome.HELD, held, node=current)

    outcome = TransitionOutcome.COMPLETED if target.is_terminal else TransitionOutcome.MOVED
    return TransitionDecision(outcome, _enter(state, target, variables), node=target)
