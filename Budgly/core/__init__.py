"""
Core package for Budgly providing the local store and Google Sheets sync.

This package includes:

- :mod:`Budgly.core.storage` – Key/value slot persistence on disk or in memory.
- :mod:`Budgly.core.database` – The local transaction store.
- :mod:`Budgly.core.vault` – Persisted Google credentials and sync configuration.
- :mod:`Budgly.core.auth` – Google OAuth2 sign-in, token refresh and the refresh-once request guard.
- :mod:`Budgly.core.service` – Full-overwrite mirroring of transactions to Google Sheets.
- :mod:`Budgly.core.sync` – Debounced, single-flight sync scheduling.
- :mod:`Budgly.core.connectivity` – Online/offline detection.
- :mod:`Budgly.core.connection` – Connecting, configuring and disconnecting the target spreadsheet.
- :mod:`Budgly.core.session` – Wiring of the above into one session.
"""
