"""LangGraph-based execution runtime for the code-execution loop.

 The runtime takes a task, lets the model write code against the sandbox's
 capability modules and feeds the execution results back until the model
 answers in plain text:

 - every model call is a THINKING phase recorded as a ``thinking`` step,
 - every tool call is executed and recorded as a ``tool`` step,
 - a wall-clock timeout turns the run into a resumable checkpoint.

 The main entry point is ``AgentLoopController``. Its collaborators (model
 gateway, capability set, step log, checkpoint store) are injected through
 ``LoopDeps``.
 """

from .engine import AgentLoopController, truncate_output
from .models import LoopDeps, LoopOptions, ModelGateway

__all__ = [
    "AgentLoopController",
    "LoopDeps",
    "LoopOptions",
    "ModelGateway",
    "truncate_output",
]
