"""
Offline-first change synchronization.

Wire everything with `contasync.sync.services.build_services`; the scheduler
in `contasync.sync.engine` drives the upload/download cycle.
"""
