"""
milestone_engine — Milestone Lifecycle & Evaluation Engine
==========================================================
Validation, weighted rubric checks, multi-persona sign-off tracking and
checkpoint management for project milestones.  The engine itself is pure:
every operation takes a milestone snapshot and returns a new one.

Module map
----------
  models.py        Frozen Pydantic entities, draft models, enums, limits.
  errors.py        ValidationResult + typed exceptions (400/404/409/422).
  config.py        Settings loaded from .env; milestone defaults.
  validation.py    Draft rules V-01..V-03, V-06..V-08; Pydantic error keys.
  rubric.py        Rubric rules V-04/V-05, score checks, weighted score.
  signoff.py       Persona sign-off tracker and approval policy.
  checkpoints.py   Checkpoint CRUD, checkpoint sign-offs, summaries.
  lifecycle.py     MilestoneLifecycle controller and derived states.
  database.py      Reference SQLite store (optimistic version column).
  api.py           REST-shaped handlers returning ApiResponse.

Lifecycle
---------
  draft-invalid ⇄ open ⇄ ready-to-close → closed
"""
__version__ = "0.1.0"
