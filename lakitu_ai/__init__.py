"""Lakitu AI.

This package contains the cloud backend that drives Lakitu's code-execution
agents: an LLM is asked, round after round, to write code against the
sandbox capabilities, the code is executed, and the output is fed back until
the model produces a final answer.

High-level architecture
-----------------------

- ``lakitu_ai.agent_core``:

  - The model gateway client (single ``execute_code`` tool per call).
  - A LangGraph-based agent loop with a step budget and a wall-clock
    timeout race.
  - A checkpoint store that snapshots a thread on timeout and restores it on
    resume (at most one ``active`` checkpoint per thread).
  - A chain-of-thought step log per thread.
  - A subagent supervisor that schedules delegated loops through a queue.
  - A generic sync outbox for shipping local records to the cloud.
  - Repository interfaces and async SQL implementations for persistence.

- ``lakitu_ai.server``: the FastAPI application exposing runs, checkpoints,
  subagents, step traces and the ``/health``, ``/version`` and ``/metrics``
  probes.

Typical workflow
----------------

1. ``AgentService.run`` starts a new thread and drives the loop.
2. The run either completes with text, or returns ``incomplete``. When the
   wall-clock timeout fired, the result carries a checkpoint id.
3. ``AgentService.resume`` restores that checkpoint and keeps going.
"""
