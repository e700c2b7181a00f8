"""
UI boundary for Budgly.

- :mod:`Budgly.ui.actions` – Qt signal hub consumed by the external UI layer.
"""
