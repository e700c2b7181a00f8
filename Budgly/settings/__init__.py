"""
Settings package: application paths, OAuth client secret and user preferences.

This package provides:

- :mod:`Budgly.settings.lib` – Paths, client secret validation and schema-checked preference slots.
"""
