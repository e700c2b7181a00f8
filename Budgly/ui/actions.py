"""Application-wide Qt signals for Budgly.

The UI layer (charts, dialogs, toasts) lives outside this package and listens to
these signals to render transaction lists, connection state and sync feedback.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for store, connection and sync events."""
    transactionsChanged = QtCore.Signal(list)

    authenticationRequested = QtCore.Signal()
    connectionChanged = QtCore.Signal()
    onlineChanged = QtCore.Signal(bool)

    syncStarted = QtCore.Signal()
    syncFinished = QtCore.Signal(object)  # last sync, epoch milliseconds
    syncFailed = QtCore.Signal(str)

    settingsChanged = QtCore.Signal(str)  # slot key

    errorLogged = QtCore.Signal(str)


signals = Signals()
