"""
Defines the possible operational states of the agent.
"""
from enum import Enum, auto

class AgentState(Enum):
    """
    Enumeration of agent operational states.

    States:
        STARTING: Context built, worker threads being started
        RUNNING: Sampling, flushing and streaming
        SHUTTING_DOWN: Cancellation signalled, threads being joined
        STOPPED: All threads joined and resources released
    """
    STARTING = auto()
    RUNNING = auto()
    SHUTTING_DOWN = auto()
    STOPPED = auto()
