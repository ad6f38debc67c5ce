"""
Rental Kernel - multi-tenant rental inventory core.

Availability state machine, optimistic-concurrency item editing, per-tenant
serial number sequences, bulk multi-item edits with per-item partial
failure, and export coordination.
"""

__version__ = "0.1.0"
