"""Task library: pollers and user workflows run by the executor."""

from ..config import SchedulingConfig
from ..update import Update
from .approve import Approve, ApproveParams
from .clear_user import ClearUser
from .dispute_price import DisputePrice, DisputePriceParams
from .fetch_past_events import FetchPastEvents, FetchPastEventsParams
from .poll_active_request import PollActiveRequest
from .poll_new_events import PollNewEvents, PollNewEventsParams
from .propose_price import ProposePrice, ProposePriceParams
from .set_active_request import SetActiveRequest
from .set_user import SetUser, SetUserParams
from .statemachine import (
    Context,
    Done,
    Executor,
    MonotonicClock,
    Sleep,
    StateMachine,
    TaskInstance,
    TaskStatus,
    Transition,
)
from .switch_or_add_chain import SwitchOrAddChain, SwitchOrAddChainParams

MACHINE_TYPES: tuple[type, ...] = (
    SetUser,
    ClearUser,
    SetActiveRequest,
    Approve,
    DisputePrice,
    ProposePrice,
    SwitchOrAddChain,
    PollActiveRequest,
    FetchPastEvents,
    PollNewEvents,
)


def build_machines(update: Update, settings: SchedulingConfig | None = None) -> list[StateMachine]:
    """Instantiate every task type against one fetcher."""
    return [machine_type(update, settings) for machine_type in MACHINE_TYPES]


__all__ = [
    "Approve",
    "ApproveParams",
    "ClearUser",
    "Context",
    "DisputePrice",
    "DisputePriceParams",
    "Done",
    "Executor",
    "FetchPastEvents",
    "FetchPastEventsParams",
    "MACHINE_TYPES",
    "MonotonicClock",
    "PollActiveRequest",
    "PollNewEvents",
    "PollNewEventsParams",
    "ProposePrice",
    "ProposePriceParams",
    "SetActiveRequest",
    "SetUser",
    "SetUserParams",
    "Sleep",
    "StateMachine",
    "SwitchOrAddChain",
    "SwitchOrAddChainParams",
    "TaskInstance",
    "TaskStatus",
    "Transition",
    "build_machines",
]
