"""BucketGuard worker loop package.

Modules
-------
scheduler
    :class:`~bucketguard.workers.scheduler.PollScheduler`, the per-process
    poll loop that claims, scans and finalizes tasks and reclaims stale ones.
"""
