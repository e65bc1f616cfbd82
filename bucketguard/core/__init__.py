"""BucketGuard core: collaborator interfaces, adapters and the error taxonomy.

This package contains the abstract task store, storage, queue, notifier and
AV engine interfaces, their concrete adapters, and the factories that select
an adapter from configuration.
"""
