"""Task queue core: repository, claim protocol, idempotent creation, worker pool.

Every coordination guarantee rests on the store rather than on in-process
locks:

- ``claim_next`` is a single UPDATE whose candidate subquery uses
  ``FOR UPDATE SKIP LOCKED``, so two workers never receive the same row.
- ``update`` is a single conditional UPDATE on ``version``, so a stale editor
  gets ``VersionConflictError`` instead of overwriting a newer edit.
- ``IdempotencyLedger.resolve`` reserves the dedup key before the task is
  created, so the key's uniqueness constraint alone decides which caller
  creates the task.

The request layer (HTTP, JSON) is not part of this package; the CLI in
``task_queue.main`` drives the same ``TaskService`` interface.
"""
