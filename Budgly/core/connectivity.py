"""Online/offline status used to gate network attempts."""
import logging

from PySide6 import QtCore, QtNetwork


class ConnectivityOracle(QtCore.QObject):
    """Reports whether the device is online using Qt's network information backend.

    Without a backend the oracle reports online, so requests are attempted and
    fail at the HTTP layer instead of being skipped.

    Signals:
        onlineChanged (bool): Emitted when reachability changes.
    """
    onlineChanged = QtCore.Signal(bool)

    def __init__(self, parent=None):
        super().__init__(parent=parent)
        self._info = None

        if QtNetwork.QNetworkInformation.loadDefaultBackend():
            self._info = QtNetwork.QNetworkInformation.instance()
            self._info.reachabilityChanged.connect(self._on_reachability_changed)
            logging.debug(f'Using network information backend "{self._info.backendName()}".')
        else:
            logging.debug('No network information backend available; assuming online.')

        from ..ui.actions import signals
        self.onlineChanged.connect(signals.onlineChanged)

    def is_online(self) -> bool:
        if self._info is None:
            return True
        return self._info.reachability() != QtNetwork.QNetworkInformation.Reachability.Disconnected

    @QtCore.Slot(QtNetwork.QNetworkInformation.Reachability)
    def _on_reachability_changed(self, reachability) -> None:
        online = reachability != QtNetwork.QNetworkInformation.Reachability.Disconnected
        logging.info(f'Network is {"online" if online else "offline"}.')
        self.onlineChanged.emit(online)
