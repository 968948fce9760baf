"""
Offline-first task backend.

Tasks are stored locally; every change is appended to an outbox that the
sync engine reconciles against a remote service. The FastAPI app lives in
``task_sync.main``.
"""

__version__ = "0.1.0"
