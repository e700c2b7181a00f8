"""Debounced, single-flight sync of the transaction history to Google Sheets.

Every store mutation calls :meth:`SyncScheduler.notify` with the full sequence.
When auto-sync is enabled a single-shot timer is (re)armed; only the snapshot
current when it fires is pushed, so a burst of edits results in one request.

At most one push runs at a time. A job submitted while a push is in flight
becomes the follow-up job; later submissions replace its snapshot, and it starts
when the in-flight push finishes. No push is ever aborted.

Auto-sync failures are logged and reported through
:attr:`Budgly.ui.actions.signals.syncFailed`; only :meth:`SyncScheduler.sync_now`
raises them to the caller.
"""
import dataclasses
import logging
import time
from typing import Any, List, Optional, Sequence

from PySide6 import QtCore

from .database import TransactionRecord
from .service import RemoteMirror
from .vault import CredentialVault

SYNC_DEBOUNCE_MS: int = 500


class SyncWorker(QtCore.QThread):
    """Runs one push on a background thread. The exception, if any, is kept in ``error``."""

    def __init__(self, mirror: RemoteMirror, records: Sequence[TransactionRecord],
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.mirror = mirror
        self.records = list(records)
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.mirror.push(self.records)
        except Exception as ex:
            self.error = ex


@dataclasses.dataclass(eq=False)
class SyncJob:
    """A push request and, once done, its outcome."""
    records: List[TransactionRecord]
    manual: bool = False
    error: Optional[BaseException] = None
    done: bool = False


@dataclasses.dataclass
class DebounceState:
    """The debounce timer with the snapshot it will push, and the in-flight bookkeeping."""
    timer: QtCore.QTimer
    pending_snapshot: Optional[List[TransactionRecord]] = None
    in_flight: Optional[SyncWorker] = None
    current: Optional[SyncJob] = None
    follow_up: Optional[SyncJob] = None


class SyncScheduler(QtCore.QObject):
    """Schedules pushes of the transaction history.

    Signals:
        jobFinished (object): Emitted with the :class:`SyncJob` once its push has completed.
    """
    jobFinished = QtCore.Signal(object)

    def __init__(self, vault: CredentialVault, mirror: RemoteMirror, connectivity: Any,
                 interval: int = SYNC_DEBOUNCE_MS, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._vault = vault
        self._mirror = mirror
        self._connectivity = connectivity
        self.last_error: Optional[BaseException] = None

        timer = QtCore.QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(interval)
        timer.timeout.connect(self._on_timeout)
        self.state = DebounceState(timer=timer)

    @property
    def is_syncing(self) -> bool:
        return self.state.in_flight is not None

    @property
    def is_pending(self) -> bool:
        return self.state.timer.isActive()

    @QtCore.Slot(list)
    def notify(self, records: List[TransactionRecord]) -> None:
        """(Re)arm the debounce timer with the latest full sequence, if auto-sync applies."""
        self.state.timer.stop()
        self.state.pending_snapshot = None

        credential = self._vault.get()
        if credential is None or not credential.auto_sync or not credential.spreadsheet_id:
            return
        if not self._connectivity.is_online():
            logging.debug('Device is offline, not scheduling a sync.')
            return

        self.state.pending_snapshot = list(records)
        self.state.timer.start()

    def cancel(self) -> None:
        """Drop the pending debounce and any queued automatic follow-up."""
        self.state.timer.stop()
        self.state.pending_snapshot = None
        if self.state.follow_up is not None and not self.state.follow_up.manual:
            self.state.follow_up = None
        logging.debug('Pending sync cancelled.')

    def sync_now(self, records: Sequence[TransactionRecord]) -> None:
        """
        Push the given records immediately and wait for the result.

        A pending debounced push is superseded. If a push is already in flight,
        this one runs right after it.

        Raises:
            status.BaseStatusException: Whatever the push raised.
        """
        self.state.timer.stop()
        self.state.pending_snapshot = None

        job = self._submit(SyncJob(records=list(records), manual=True))

        loop = QtCore.QEventLoop()

        def on_finished(finished: SyncJob) -> None:
            if finished is job:
                loop.quit()

        self.jobFinished.connect(on_finished)
        try:
            if not job.done:
                loop.exec()
        finally:
            self.jobFinished.disconnect(on_finished)

        if job.error is not None:
            raise job.error

    @QtCore.Slot()
    def _on_timeout(self) -> None:
        records = self.state.pending_snapshot
        self.state.pending_snapshot = None
        if records is None:
            return
        self._submit(SyncJob(records=records))

    def _submit(self, job: SyncJob) -> SyncJob:
        """Start the job, or fold it into the follow-up if a push is in flight.

        Returns:
            The job that will carry these records.
        """
        if self.state.in_flight is None:
            self._start(job)
            return job

        follow_up = self.state.follow_up
        if follow_up is None:
            self.state.follow_up = job
            logging.debug('Sync in flight, queued a follow-up.')
            return job

        follow_up.records = job.records
        follow_up.manual = follow_up.manual or job.manual
        logging.debug('Sync in flight, replaced the follow-up snapshot.')
        return follow_up

    def _start(self, job: SyncJob) -> None:
        from ..ui.actions import signals

        worker = SyncWorker(self._mirror, job.records, parent=self)
        worker.finished.connect(self._on_worker_finished)
        self.state.in_flight = worker
        self.state.current = job

        logging.debug(f'Starting {"manual" if job.manual else "automatic"} sync of {len(job.records)} record(s).')
        signals.syncStarted.emit()
        worker.start()

    @QtCore.Slot()
    def _on_worker_finished(self) -> None:
        from ..ui.actions import signals

        worker = self.state.in_flight
        job = self.state.current
        if worker is None or job is None:
            return
        self.state.in_flight = None
        self.state.current = None

        worker.wait()
        job.error = worker.error
        job.done = True
        worker.deleteLater()

        if job.error is None:
            stamp = int(time.time() * 1000)
            self._vault.update(last_sync=stamp)
            self.last_error = None
            signals.syncFinished.emit(stamp)
        else:
            self.last_error = job.error
            logging.warning(f'Sync failed: {job.error}')
            signals.syncFailed.emit(str(job.error))

        self.jobFinished.emit(job)

        follow_up = self.state.follow_up
        self.state.follow_up = None
        if follow_up is not None:
            self._start(follow_up)
