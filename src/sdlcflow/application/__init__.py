"""
Application layer for the SDLC orchestration core.

Contains the services that drive workflow runs: routing, scheduling, gates,
sprints, incidents, checkpoints and the supervisor composing them.
"""

from sdlcflow.application.checkpoint_service import CheckpointService
from sdlcflow.application.gates import GateController
from sdlcflow.application.incidents import IncidentController
from sdlcflow.application.router import CapabilityRouter
from sdlcflow.application.run_event_emitter import RunEventEmitter
from sdlcflow.application.scheduler import Dispatch, TaskScheduler
from sdlcflow.application.sprints import SprintPlanner, select_commitment
from sdlcflow.application.supervisor import RunContext, WorkflowSupervisor
from sdlcflow.application.ticker import SafetyNetTicker

__all__ = [
    "CapabilityRouter",
    "CheckpointService",
    "Dispatch",
    "GateController",
    "IncidentController",
    "RunContext",
    "RunEventEmitter",
    "SafetyNetTicker",
    "SprintPlanner",
    "TaskScheduler",
    "WorkflowSupervisor",
    "select_commitment",
]
