"""Order lifecycle: state machine, engine and catalog collaborators."""

from order_orchestrator.lifecycle.engine import LifecycleEngine
from order_orchestrator.lifecycle.state_machine import TRANSITIONS, check_transition

__all__ = ["LifecycleEngine", "TRANSITIONS", "check_transition"]
