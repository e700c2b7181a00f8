"""
Logging subsystem.

Modules:

- :mod:`Budgly.log.log` – Root logger setup, an in-memory log tank and the Qt message bridge.
"""
