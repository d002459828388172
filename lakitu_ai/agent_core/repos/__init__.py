"""Repository interfaces and SQL implementations for agent persistence.

The repository layer is the persistence boundary for the agent core.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  loop, the checkpoint store and the subagent supervisor depend on.
- Persist the durable records shared between runs:

  - the per-thread chain-of-thought step log,
  - checkpoints for timeout/resume,
  - subagent records and their lifecycle,
  - the sync outbox.

Design notes
------------

All cross-run communication goes through these records; there is no shared
in-process state between runs. The core is written against interfaces so it
can be used with:

- a SQL database (async SQLAlchemy implementation provided in ``repos.sql``),
- in-memory fakes for unit tests.

The SQL implementation commits at repository-method boundaries and makes
status transitions conditional on the current status.
"""

from .interfaces import (
    CheckpointRepository,
    OutboxRepository,
    StepRepository,
    SubagentRepository,
)

__all__ = [
    "StepRepository",
    "CheckpointRepository",
    "SubagentRepository",
    "OutboxRepository",
]
