"""
signflow_batch -- Reconciliation sweeps and their scheduling.

Provides the expiration and archival sweeps (one transaction per envelope,
idempotent under at-least-once invocation), the artifact-store collaborator,
pure cron evaluation, an in-process polling scheduler, the DI orchestrator
and the ``signflow`` command line.

Architecture:
    signflow_batch/ is a top-level package.  Nothing in signflow_kernel/
    imports from signflow_batch.
"""
