"""Convergence agent package."""

from .config import AgentSettings, load_settings
from .models import Report, RunOutcome
from .runner import ConvergenceAgent, RunResult

__all__ = ["AgentSettings", "ConvergenceAgent", "Report", "RunOutcome", "RunResult", "load_settings"]
