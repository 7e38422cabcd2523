"""Reward redemption exports."""

from .state_machine import RedemptionStateMachine  # noqa: F401
