"""
State machines for multi-step seller flows.

OnboardingFlowMachine drives the identity -> business -> bank document steps.
"""

from .base import FlowMachine
from .onboarding_flow import STEP_ORDER, OnboardingFlowMachine

__all__ = ["FlowMachine", "OnboardingFlowMachine", "STEP_ORDER"]
