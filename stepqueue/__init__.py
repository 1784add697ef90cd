"""
Lease-based Step Queue

A durable task queue on PostgreSQL: workers compete to claim job steps under
time-limited leases, complete them if they still own them, and recover work
abandoned by crashed workers on the next claim.
"""

__version__ = "1.0.0"
