from __future__ import annotations

"""
Messaging channel between the phone-side cache and the companion device.

The interface mirrors what the orchestrator needs:
  1) best-effort immediate messages (send_message)
  2) durable, latest-wins context replication (update_application_context)
  3) reliable, queued one-shot file transfer with metadata (transfer_file)

HttpRelayChannel is a concrete channel that talks to a companion relay over HTTP:

    POST {base_url}/companion/files     body = file bytes, X-Satellite-Metadata = JSON
    POST {base_url}/companion/messages  JSON body
    POST {base_url}/companion/context   JSON body
"""

import json
import queue
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from common.errors import ChannelError
from common.logging_setup import get_logger


log = get_logger(__name__)

METADATA_HEADER = "X-Satellite-Metadata"


class ActivationState(str, Enum):
    NOT_ACTIVATED = "not_activated"
    INACTIVE = "inactive"
    ACTIVATED = "activated"


@dataclass
class FileTransfer:
    """
    A queued file handoff. `done` flips once the channel has delivered it.

    `data` is the file content captured at enqueue time, so the caller may
    remove or rewrite `file_path` as soon as transfer_file returns.
    """
    file_path: Path
    metadata: Dict[str, Any]
    data: bytes = field(default=b"", repr=False)
    transfer_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    done: bool = False
    error: Optional[str] = None


class MessagingChannel(ABC):
    """Capability interface for the phone <-> companion link."""

    @property
    @abstractmethod
    def activation_state(self) -> ActivationState: ...

    @property
    @abstractmethod
    def is_reachable(self) -> bool: ...

    @abstractmethod
    def send_message(self, payload: Dict[str, Any]) -> bool:
        """Deliver now if the peer is reachable; False otherwise."""

    @abstractmethod
    def update_application_context(self, context: Dict[str, Any]) -> None:
        """Replace the replicated context; delivered whenever the peer is next reachable."""

    @abstractmethod
    def transfer_file(self, file_path: Path, metadata: Dict[str, Any]) -> FileTransfer:
        """Queue a file + metadata for reliable delivery; the content is read before returning. Raises ChannelError if refused."""

    @property
    @abstractmethod
    def outstanding_file_transfers(self) -> List[FileTransfer]: ...


class HttpRelayChannel(MessagingChannel):
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_backoff_s: float = 2.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.max_retries = int(max_retries)
        self.retry_backoff_s = float(retry_backoff_s)
        self.session = session or requests.Session()

        self._queue: "queue.Queue[FileTransfer]" = queue.Queue()
        self._outstanding: List[FileTransfer] = []
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._closed = threading.Event()

        self._reachable = False
        self._pending_context: Optional[Dict[str, Any]] = None

    # ----------------------------
    # State
    # ----------------------------
    @property
    def activation_state(self) -> ActivationState:
        if self._closed.is_set():
            return ActivationState.INACTIVE
        return ActivationState.ACTIVATED

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    @property
    def outstanding_file_transfers(self) -> List[FileTransfer]:
        with self._lock:
            return list(self._outstanding)

    # ----------------------------
    # Messages & context
    # ----------------------------
    def send_message(self, payload: Dict[str, Any]) -> bool:
        ok = self._post_json("/companion/messages", payload)
        if ok:
            self._flush_context()
        return ok

    def update_application_context(self, context: Dict[str, Any]) -> None:
        with self._lock:
            self._pending_context = dict(context)
        self._flush_context()

    def _flush_context(self) -> None:
        with self._lock:
            ctx = self._pending_context
        if ctx is None:
            return
        if self._post_json("/companion/context", ctx):
            with self._lock:
                if self._pending_context is ctx:
                    self._pending_context = None

    def _post_json(self, path: str, payload: Dict[str, Any]) -> bool:
        try:
            r = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("Companion unreachable for %s: %s", path, e)
            self._reachable = False
            return False
        self._reachable = r.status_code < 500
        if r.status_code >= 300:
            log.warning("Companion rejected %s: %s %s", path, r.status_code, r.text[:200])
            return False
        return True

    # ----------------------------
    # File transfers
    # ----------------------------
    def transfer_file(self, file_path: Path, metadata: Dict[str, Any]) -> FileTransfer:
        if self._closed.is_set():
            raise ChannelError("Channel is closed")
        file_path = Path(file_path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise ChannelError(f"No file to transfer at {file_path}: {e}") from e
        xfer = FileTransfer(file_path=file_path, metadata=dict(metadata), data=data)
        with self._lock:
            self._outstanding.append(xfer)
        self._queue.put(xfer)
        self._ensure_worker()
        return xfer

    def close(self, timeout: Optional[float] = None) -> None:
        """Refuse new transfers and let the worker finish the queued ones."""
        self._closed.set()
        worker = self._worker
        if worker is not None and worker.is_alive():
            self._queue.put(None)  # type: ignore[arg-type]
            worker.join(timeout=timeout)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="companion-transfer", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            xfer = self._queue.get()
            if xfer is None:
                break
            self._deliver(xfer)
            with self._lock:
                self._outstanding = [x for x in self._outstanding if x is not xfer]

    def _deliver(self, xfer: FileTransfer) -> None:
        headers = {
            METADATA_HEADER: json.dumps(xfer.metadata),
            "Content-Type": "application/octet-stream",
        }
        while xfer.attempts <= self.max_retries:
            xfer.attempts += 1
            try:
                r = self.session.post(
                    f"{self.base_url}/companion/files", data=xfer.data, headers=headers, timeout=self.timeout
                )
                if r.status_code < 300:
                    xfer.done = True
                    self._reachable = True
                    log.info(
                        "Delivered file transfer",
                        extra={"extra": {"file": xfer.file_path.name, "attempts": xfer.attempts}},
                    )
                    self._flush_context()
                    return
                xfer.error = f"HTTP {r.status_code}"
                if 400 <= r.status_code < 500:
                    break  # companion rejected the payload; retrying will not help
            except requests.RequestException as e:
                xfer.error = str(e)
                self._reachable = False
            if xfer.attempts <= self.max_retries:
                time.sleep(self.retry_backoff_s * xfer.attempts)
        log.error(
            "File transfer failed",
            extra={"extra": {"file": xfer.file_path.name, "attempts": xfer.attempts, "error": xfer.error}},
        )
