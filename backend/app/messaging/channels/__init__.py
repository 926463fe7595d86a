"""
channels - Per-channel delivery transports.

Each transport exposes:
    enabled()            → bool
    persist(...) / send(...) → bool

False means "not delivered". Ordinary delivery problems are logged and
reported through the return value, never raised. Skip bookkeeping lives
in broadcast_service.
"""
