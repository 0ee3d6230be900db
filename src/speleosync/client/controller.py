"""Lock lifecycle controller.

This module provides:
- LockController: state machine over the single project lock a client holds
- HostApplication: what the controller needs from the editing application
- ControllerListener: notifications for log lines, progress and outcomes
- ActionResult: terminal outcome of each controller action

State transitions:
    UNLOCKED -> ACQUIRING -> LOCKED -> RELEASING -> UNLOCKED
    ACQUIRING -> UNLOCKED      (lock refused or failed)
    RELEASING -> LOCKED        (release failed)
    LOCKED -> UNLOCKED         (refresh refused, or release_if_held)

Lock-affecting actions run on the service's worker pool, one at a time.
Host callbacks are never waited on once release_if_held() has started, so
the host may call it from the thread that runs its dispatch queue.
Confirmation callbacks run on the caller's thread before any work is
submitted, so declining never touches the network.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from speleosync.client.errors import LockNotHeldError, ServiceError
from speleosync.client.service import DownloadStatus
from speleosync.client.state import Reconciliation
from speleosync.core.types import LockState

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from speleosync.client.api import Project
    from speleosync.client.service import DownloadResult, SyncService

logger = logging.getLogger(__name__)

LOCK_DATE_FORMAT = "%Y-%m-%d %H:%M"

# How often a pending host call checks whether release_if_held() started
HOST_POLL_INTERVAL = 0.1

# How long release_if_held() waits for a running action before releasing anyway
RELEASE_WAIT_TIMEOUT = 30.0


class HostUnavailableError(Exception):
    """A host call was abandoned because the lock is being released."""


class HostApplication(Protocol):
    """The editing application hosting the controller."""

    def load_local_file(self, path: Path) -> None:
        """Open the downloaded project file in the editor."""
        ...

    def flush_current_edits_to_local_file(self) -> None:
        """Save pending edits to the local project file before upload."""
        ...


class ControllerListener:
    """Receives controller notifications. Override what you need."""

    def on_log(self, message: str) -> None:
        pass

    def on_busy(self, busy: bool, message: str = "") -> None:
        pass

    def on_state_changed(self, state: LockState, project: Project | None) -> None:
        pass

    def on_success(self, action: Action, message: str) -> None:
        pass

    def on_failure(self, action: Action, message: str, error: ServiceError | None) -> None:
        pass


class Action(Enum):
    """Controller actions reported to the listener."""

    OPEN = "open"
    UPLOAD = "upload"
    UNLOCK = "unlock"


@dataclass(frozen=True)
class ActionResult:
    """Terminal outcome of a controller action.

    Attributes:
        action: Which action ran.
        ok: Whether it succeeded.
        message: User-facing summary.
        state: Lock state after the action.
        project: Project held after the action (None when UNLOCKED).
        error: Classified failure, if the action failed on a service call.
        download: Download outcome, for OPEN.
    """

    action: Action
    ok: bool
    message: str
    state: LockState
    project: Project | None = None
    error: ServiceError | None = None
    download: DownloadResult | None = None


def describe_lock_holder(project: Project) -> str:
    """Describe who holds the lock on a project, for refusal messages."""
    if not project.is_locked:
        return f"Project '{project.name}' is locked by another user"
    mutex = project.active_mutex
    text = f"Project '{project.name}' is locked by {mutex.user}"
    if mutex.creation_date is not None:
        text += f" since {mutex.creation_date.strftime(LOCK_DATE_FORMAT)}"
    return text


def _inline(fn: Callable[[], Any]) -> None:
    fn()


def _resolved(result: ActionResult) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


class LockController:
    """Tracks the one project lock this client holds.

    Usage:
        controller = LockController(service, host, listener)
        controller.open_project(project, confirm_switch=ask_user).result()
        controller.upload("Surveyed new passage", release_after=True).result()
        controller.shutdown()
    """

    def __init__(
        self,
        service: SyncService,
        host: HostApplication,
        listener: ControllerListener | None = None,
        dispatch: Callable[[Callable[[], Any]], None] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            service: Service performing the network operations.
            host: Editing application.
            listener: Receives notifications; defaults to a no-op listener.
            dispatch: Runs a callable on the host's UI thread. Defaults to
                calling it inline on the worker thread.
        """
        self._service = service
        self._host = host
        self._listener = listener or ControllerListener()
        self._dispatch = dispatch or _inline

        self._state = LockState.UNLOCKED
        self._project: Project | None = None
        self._state_lock = threading.Lock()

        # Serializes lock-affecting actions
        self._action_lock = threading.Lock()
        # Set while release_if_held() runs; pending host calls give up
        self._closing = threading.Event()

    # === State ===

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def current_project(self) -> Project | None:
        return self._project

    def _snapshot(self) -> tuple[LockState, Project | None]:
        with self._state_lock:
            return self._state, self._project

    def _held_project(self) -> Project | None:
        state, project = self._snapshot()
        return project if state == LockState.LOCKED else None

    def _set_state(self, state: LockState, project: Project | None) -> None:
        if state == LockState.UNLOCKED:
            project = None
        with self._state_lock:
            changed = state != self._state or project != self._project
            self._state = state
            self._project = project
        if changed:
            name = project.name if project else "-"
            logger.debug(f"Lock state: {state.value} ({name})")
            self._notify("on_state_changed", state, project)

    def _result(
        self,
        action: Action,
        ok: bool,
        message: str,
        error: ServiceError | None = None,
        download: DownloadResult | None = None,
    ) -> ActionResult:
        state, project = self._snapshot()
        if ok:
            self._notify("on_success", action, message)
        else:
            self._notify("on_failure", action, message, error)
        return ActionResult(action, ok, message, state, project, error, download)

    # === Notifications ===

    def _notify(self, method: str, *args: Any) -> None:
        callback = getattr(self._listener, method)

        def deliver() -> None:
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Listener {method} failed")

        self._dispatch(deliver)

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        self._notify("on_log", message)

    def _call_host(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a host callback through dispatch and wait for it.

        Raises:
            HostUnavailableError: If release_if_held() started before the
                host picked the call up.
        """
        if self._closing.is_set():
            raise HostUnavailableError("host call skipped while releasing the lock")

        future: Future = Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

        self._dispatch(run)
        while True:
            try:
                return future.result(timeout=HOST_POLL_INTERVAL)
            except TimeoutError:
                if future.done():
                    raise
                if self._closing.is_set() and future.cancel():
                    raise HostUnavailableError(
                        "host call abandoned while releasing the lock"
                    ) from None

    # === Execution ===

    def _submit(self, action: Action, body: Callable[[], ActionResult], busy: str) -> Future:
        return self._service.pool.submit(self._run, action, body, busy)

    def _run(self, action: Action, body: Callable[[], ActionResult], busy: str) -> ActionResult:
        """Execute an action body; every failure ends in a safe state."""
        with self._action_lock:
            self._notify("on_busy", True, busy)
            try:
                return body()
            except HostUnavailableError as e:
                self._recover()
                self._log(f"{action.value} interrupted: {e}", logging.WARNING)
                return self._result(action, False, f"{action.value.title()} interrupted: {e}")
            except ServiceError as e:
                self._recover()
                self._log(f"{action.value} failed: {e}", logging.WARNING)
                return self._result(action, False, e.user_message(action.value.title()), e)
            except Exception as e:
                logger.exception(f"Unexpected error during {action.value}")
                self._recover()
                return self._result(action, False, f"{action.value.title()} failed: {e}")
            finally:
                self._notify("on_busy", False, "")

    def _recover(self) -> None:
        """Leave any transient state after an unexpected failure."""
        state, project = self._snapshot()
        if state == LockState.ACQUIRING:
            self._set_state(LockState.UNLOCKED, None)
        elif state == LockState.RELEASING:
            self._set_state(LockState.LOCKED, project)

    # === Open ===

    def open_project(
        self,
        project: Project,
        confirm_switch: Callable[[Project, Project], bool] | None = None,
    ) -> Future:
        """Lock (unless read-only), download and load a project.

        If another project is locked, confirm_switch(held, project) is asked
        first; declining, or passing no callback, leaves the held lock alone.

        Returns:
            Future resolving to an ActionResult.
        """
        held = self._held_project()
        confirmed = False
        if held is not None and held.id != project.id:
            confirmed = bool(confirm_switch and confirm_switch(held, project))
            if not confirmed:
                self._log(f"Kept lock on {held.name}; {project.name} not opened")
                return _resolved(
                    self._result(Action.OPEN, False, f"Switch to '{project.name}' cancelled")
                )

        return self._submit(
            Action.OPEN,
            lambda: self._open(project, confirmed),
            f"Opening {project.name}...",
        )

    def _open(self, project: Project, switch_confirmed: bool) -> ActionResult:
        held = self._held_project()
        if held is not None and held.id != project.id:
            if not switch_confirmed:
                return self._result(Action.OPEN, False, f"Switch to '{project.name}' cancelled")
            self._log(f"Releasing lock on {held.name} to open {project.name}")
            released, error = self._release(held)
            if not released:
                return self._result(
                    Action.OPEN,
                    False,
                    f"Could not release lock on '{held.name}'; '{project.name}' not opened",
                    error,
                )

        lock_message = ""
        if project.permission.can_lock:
            lock_message = self._acquire(project)
        else:
            lock_message = "no write permission"
            self._log(f"{project.name} is read-only; opening without a lock")
            if self._held_project() is not None:
                released, error = self._release(project)
                if not released:
                    return self._result(
                        Action.OPEN,
                        False,
                        f"Could not release lock on '{project.name}' to open it read-only",
                        error,
                    )
            self._set_state(LockState.UNLOCKED, None)

        download = self._service.download_project(project)
        if not download.ok:
            if self._held_project() is not None:
                self._log(f"Download failed; releasing lock on {project.name}")
                self._release(project)
                self._set_state(LockState.UNLOCKED, None)
            return self._result(
                Action.OPEN, False, download.error.user_message("Download"), download.error
            )

        outcome = download.value
        self._report_reconciliation(project, outcome.reconciliation)

        if outcome.status == DownloadStatus.DOWNLOADED:
            self._call_host(self._host.load_local_file, outcome.path)
            message = f"Opened '{project.name}'"
        else:
            message = f"'{project.name}' has no content yet; save it to {outcome.path} to upload"
            self._log(message)

        if lock_message:
            message = f"{message} (read-only: {lock_message})"
        elif self._held_project() is not None:
            message = f"{message} (locked for editing)"
        return self._result(Action.OPEN, True, message, download=outcome)

    def _acquire(self, project: Project) -> str:
        """Acquire or refresh the lock on project.

        Returns:
            Empty string when the lock is held, else why it is not.
        """
        held = self._held_project()
        refreshing = held is not None and held.id == project.id
        if not refreshing:
            self._set_state(LockState.ACQUIRING, project)

        result = self._service.acquire_or_refresh_project_mutex(project)
        if result.ok and result.value:
            self._set_state(LockState.LOCKED, project)
            self._log(f"Lock {'refreshed' if refreshing else 'acquired'} on {project.name}")
            return ""

        self._set_state(LockState.UNLOCKED, None)
        if result.ok:
            reason = describe_lock_holder(project)
        else:
            reason = result.error.user_message("Lock")
        self._log(f"Could not lock {project.name}: {reason}", logging.WARNING)
        return reason

    def _report_reconciliation(self, project: Project, outcome: Reconciliation | None) -> None:
        if outcome == Reconciliation.IDENTITY_MISMATCH:
            self._log(
                f"Project {project.id} changed identity on the server; local record updated",
                logging.WARNING,
            )
        elif outcome == Reconciliation.REMOTE_CHANGED:
            self._log(f"{project.name} was modified on the server since the last download")

    # === Upload ===

    def upload(self, message: str, release_after: bool = False) -> Future:
        """Save pending edits and upload them as a new revision.

        Returns:
            Future resolving to an ActionResult.
        """
        if not message or not message.strip():
            return _resolved(self._result(Action.UPLOAD, False, "Upload message cannot be empty"))

        project = self._held_project()
        if project is None:
            return _resolved(
                self._result(Action.UPLOAD, False, "No project is locked for editing")
            )
        if not project.permission.can_lock:
            return _resolved(
                self._result(Action.UPLOAD, False, f"'{project.name}' is read-only")
            )

        return self._submit(
            Action.UPLOAD,
            lambda: self._upload(message.strip(), release_after),
            f"Uploading {project.name}...",
        )

    def _upload(self, message: str, release_after: bool) -> ActionResult:
        project = self._held_project()
        if project is None:
            return self._result(Action.UPLOAD, False, "No project is locked for editing")

        self._call_host(self._host.flush_current_edits_to_local_file)

        result = self._service.upload_project(message, project)
        if not result.ok:
            if isinstance(result.error, LockNotHeldError):
                self._log(f"Lock on {project.name} is no longer held", logging.WARNING)
                self._set_state(LockState.UNLOCKED, None)
            return self._result(
                Action.UPLOAD, False, result.error.user_message("Upload"), result.error
            )

        self._log(f"Uploaded {project.name}")
        if not release_after:
            return self._result(Action.UPLOAD, True, f"Uploaded '{project.name}'")

        released, error = self._release(project)
        if not released:
            return self._result(
                Action.UPLOAD,
                False,
                f"Uploaded '{project.name}' but could not release the lock",
                error,
            )
        return self._result(Action.UPLOAD, True, f"Uploaded '{project.name}' and released lock")

    # === Release ===

    def unlock(self, confirm: Callable[[Project], bool]) -> Future:
        """Release the held lock after confirm(project) returns True.

        Returns:
            Future resolving to an ActionResult.
        """
        project = self._held_project()
        if project is None:
            return _resolved(self._result(Action.UNLOCK, False, "No project is locked"))
        if not confirm(project):
            return _resolved(
                self._result(Action.UNLOCK, False, f"Kept lock on '{project.name}'")
            )
        return self._submit(
            Action.UNLOCK, lambda: self._unlock(project), f"Unlocking {project.name}..."
        )

    def _unlock(self, project: Project) -> ActionResult:
        held = self._held_project()
        if held is None or held.id != project.id:
            return self._result(Action.UNLOCK, False, "No project is locked")
        released, error = self._release(project)
        if released:
            return self._result(Action.UNLOCK, True, f"Released lock on '{project.name}'")
        return self._result(
            Action.UNLOCK, False, f"Could not release lock on '{project.name}'", error
        )

    def _release(self, project: Project) -> tuple[bool, ServiceError | None]:
        """RELEASING, then UNLOCKED on success or back to LOCKED."""
        self._set_state(LockState.RELEASING, project)
        result = self._service.release_project_mutex(project)
        if result.ok and result.value:
            self._set_state(LockState.UNLOCKED, None)
            self._log(f"Lock released on {project.name}")
            return True, None

        self._set_state(LockState.LOCKED, project)
        reason = result.error.user_message("Release") if result.error else "refused by server"
        self._log(f"Could not release lock on {project.name}: {reason}", logging.WARNING)
        return False, result.error

    def release_if_held(self, timeout: float = RELEASE_WAIT_TIMEOUT) -> bool:
        """Release the held lock, if any, on the calling thread.

        Always ends UNLOCKED whatever the server answers. A running action
        stops waiting for host callbacks, so this is safe to call from the
        thread that drains the dispatch queue.

        Args:
            timeout: Seconds to wait for a running action to finish before
                releasing without it.

        Returns:
            True if the server confirmed the release.
        """
        self._closing.set()
        acquired = self._action_lock.acquire(timeout=timeout)
        if not acquired:
            logger.warning(f"Action still running after {timeout}s; releasing anyway")
        try:
            return self._release_now()
        finally:
            if acquired:
                self._action_lock.release()
            self._closing.clear()

    def _release_now(self) -> bool:
        project = self._held_project()
        if project is None:
            self._set_state(LockState.UNLOCKED, None)
            return False

        released = False
        try:
            result = self._service.release_project_mutex(project)
            released = result.ok and bool(result.value)
        except ServiceError as e:
            logger.warning(f"Release of {project.name} skipped: {e}")
        except Exception:
            logger.exception(f"Unexpected error releasing {project.name}")
        finally:
            self._set_state(LockState.UNLOCKED, None)

        if released:
            self._log(f"Lock released on {project.name}")
        else:
            self._log(f"Lock on {project.name} dropped locally", logging.WARNING)
        return released

    def logout(self) -> None:
        """Release any held lock, then end the session."""
        self.release_if_held()
        self._service.logout()

    def shutdown(self) -> None:
        """Release any held lock, then stop the worker pool."""
        self.release_if_held()
        self._service.shutdown()
