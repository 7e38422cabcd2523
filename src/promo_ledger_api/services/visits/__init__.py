"""Visit lifecycle exports."""

from .state_machine import VisitStateMachine, VisitStats  # noqa: F401
