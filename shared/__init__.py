"""
Shared Kernel

Building blocks used by every rental context: base domain types,
money helpers, domain errors, the unit of work and the event bus.
"""
