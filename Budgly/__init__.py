"""
Budgly: local-first expense and income tracking with Google Sheets sync.

This package provides:

- :mod:`Budgly.core` – The local transaction store, credential vault and debounced Google Sheets mirror.
- :mod:`Budgly.settings` – Application paths, OAuth client secret and preference slots.
- :mod:`Budgly.status` – Status codes and exceptions.
- :mod:`Budgly.log` – Logging setup with an in-memory log tank.
- :mod:`Budgly.ui` – Signals the user interface listens to.

Use :meth:`Budgly.core.session.Session.from_paths` to build the services.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('Budgly requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'Budgly: local-first expense and income tracking with Google Sheets sync.'

from .log import log

log.setup_logging()
