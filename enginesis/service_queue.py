"""Request queue and dispatcher.

Every remote call becomes a QueuedRequest appended to one FIFO queue and is sent
only when the client is online. At most one request is in flight at a time.

- Offline: the request stays queued, the queue is persisted, and the caller gets an
  OFFLINE result right away.
- Transport failure: the request goes back to PENDING, the client goes offline.
- Response received: the request is removed and its result delivered.

Delivery order for a terminal result: result preprocessor, then the per-call callback
or, when there is none, the default subscriber. The awaitable returned by enqueue()
resolves once, with the first outcome the request had (which may be OFFLINE).
Nothing here raises to the caller: every failure is an error-shaped result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from .domain import QueuedRequest, ResultCallback, StateStatus
from .error_handling import ErrorCode, error_response, has_status
from .event_bus import EventBus
from .http_client import Transport, TransportError, TransportResponse, convert_params_to_form_data, select_transport
from .local_storage import SERVICE_QUEUE_KEY, LocalStorage
from .session import Session


logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = ("fn", "state_seq", "state_status")


class ServiceQueue:
    def __init__(
        self,
        session: Session,
        storage: LocalStorage,
        transports: Sequence[Transport],
        bus: EventBus,
        default_subscriber: Optional[ResultCallback] = None,
    ) -> None:
        self._session = session
        self._storage = storage
        self._transports = list(transports)
        self._bus = bus
        self._default_subscriber = default_subscriber
        self._preprocessor: Optional[Callable[[Dict[str, Any]], None]] = None
        self._queue: List[QueuedRequest] = []
        self._lock = asyncio.Lock()
        self._persisted = False

    def set_result_preprocessor(self, preprocessor: Optional[Callable[[Dict[str, Any]], None]]) -> None:
        self._preprocessor = preprocessor

    def set_default_subscriber(self, subscriber: Optional[ResultCallback]) -> None:
        self._default_subscriber = subscriber

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def entries(self) -> List[QueuedRequest]:
        return list(self._queue)

    def pending_count(self) -> int:
        return sum(1 for e in self._queue if e.state_status == StateStatus.PENDING)

    # --- Public API ---
    async def enqueue(
        self,
        service_name: str,
        parameters: Optional[Dict[str, Any]] = None,
        callback: Optional[ResultCallback] = None,
    ) -> Dict[str, Any]:
        session = self._session
        if session.disabled:
            result = error_response(service_name, 0, ErrorCode.DISABLED, "Enginesis is disabled.")
            self._deliver(result, callback)
            return result
        if not session.valid_operational_state():
            result = error_response(
                service_name, 0, ErrorCode.VALIDATION_FAILED, "Enginesis internal state failed validation."
            )
            self._deliver(result, callback)
            return result

        envelope = session.base_parameters(service_name)
        state_seq = envelope["state_seq"]
        envelope.update(parameters or {})
        for key in _ENVELOPE_KEYS:
            envelope.pop(key, None)
        entry = QueuedRequest(
            fn=service_name,
            state_seq=state_seq,
            parameters=envelope,
            callback=callback,
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(entry)
        logger.debug("queued %s #%d", service_name, state_seq)

        while not entry.future.done() and session.is_online:
            if await self.dispatch_next() is None:
                break
        if not entry.future.done():
            self._save_queue()
            message = (
                f"Enginesis is offline. Message {service_name} will be processed when"
                " network connectivity is restored."
            )
            logger.debug(message)
            entry.future.set_result(error_response(service_name, state_seq, ErrorCode.OFFLINE, message))
        return entry.future.result()

    def immediate_error(
        self,
        service_name: str,
        code: str,
        message: str,
        callback: Optional[ResultCallback] = None,
        passthru: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Answer a call that failed local checks; nothing is queued, no sequence number is used."""

        result = error_response(service_name, 0, code, message, passthru)
        self._deliver(result, callback, preprocess=False)
        return result

    async def dispatch_next(self) -> Optional[Dict[str, Any]]:
        """Send the oldest PENDING request; None when offline or nothing is pending."""

        if not self._session.is_online:
            return None
        async with self._lock:
            if not self._session.is_online:
                return None
            entry = self._next_pending()
            if entry is None:
                return None
            entry.state_status = StateStatus.IN_FLIGHT
            try:
                fields = convert_params_to_form_data(entry.form_fields())
            except (TypeError, ValueError) as exc:
                self._remove(entry)
                message = f"Parameters for {entry.fn} cannot be sent: {exc}"
                logger.warning(message)
                result = error_response(entry.fn, entry.state_seq, ErrorCode.INVALID_PARAM, message)
                self._deliver(result, entry.callback, entry)
                return result

            transport = select_transport(self._transports)
            if transport is None:
                return self._transport_failed(entry, "no transport available")
            try:
                resp = await transport.post_form(self._session.service_url, fields)
            except TransportError as exc:
                return self._transport_failed(entry, str(exc))
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s transport raised unexpectedly: %s", transport.name, exc)
                return self._transport_failed(entry, str(exc))

            self._remove(entry)
            result = self._parse_response(entry, resp)
            self._deliver(result, entry.callback, entry)
            return result

    def restore_queue(self) -> bool:
        """Load the persisted queue and append its entries as PENDING. True if anything was restored."""

        saved = self._storage.load_object(SERVICE_QUEUE_KEY)
        if not isinstance(saved, list) or not saved:
            return False
        self._remove_persisted()

        known = {e.state_seq for e in self._queue}
        restored: List[QueuedRequest] = []
        for item in saved:
            try:
                entry = QueuedRequest.from_dict(item)
            except (TypeError, ValueError) as exc:
                logger.warning("dropping unreadable queued request %r: %s", item, exc)
                continue
            if entry.state_seq in known:
                continue
            entry.state_status = StateStatus.PENDING
            known.add(entry.state_seq)
            restored.append(entry)
        if not restored:
            return False

        self._queue = restored + self._queue
        highest = max(e.state_seq for e in restored)
        if highest > self._session.sync_id:
            self._session.sync_id = highest
        self._persisted = True
        logger.info("restored %d queued request(s)", len(restored))
        return True

    async def drain_on_reconnect(self) -> List[Dict[str, Any]]:
        """Go online and send everything pending; stops early if the client goes offline again."""

        was_offline = not self._session.is_online
        self._session.is_online = True
        if was_offline:
            logger.info("Enginesis is back online")
        self._bus.broadcast_session_status("online")

        results: List[Dict[str, Any]] = []
        while self._session.is_online and self._next_pending() is not None:
            result = await self.dispatch_next()
            if result is None:
                break
            results.append(result)
        if not self._queue:
            self._remove_persisted()
        return results

    def set_offline(self) -> bool:
        """Mark the client offline; True on an online to offline transition."""

        if not self._session.is_online:
            return False
        self._session.is_online = False
        self._save_queue()
        logger.info("Enginesis went offline, %d request(s) queued", len(self._queue))
        self._bus.broadcast_session_status("offline")
        return True

    # --- Internal ---
    def _next_pending(self) -> Optional[QueuedRequest]:
        for entry in self._queue:
            if entry.state_status == StateStatus.PENDING:
                return entry
        return None

    def _transport_failed(self, entry: QueuedRequest, reason: str) -> Dict[str, Any]:
        entry.state_status = StateStatus.PENDING
        if self.set_offline():
            message = (
                f"Enginesis network error encountered, assuming we're offline."
                f" {self._session.server_host} for {entry.fn}: {reason}"
            )
        else:
            self._save_queue()
            message = "Enginesis is already offline, leaving this message on the queue."
        logger.debug(message)
        result = error_response(entry.fn, entry.state_seq, ErrorCode.OFFLINE, message)
        if entry.future is not None and not entry.future.done():
            entry.future.set_result(result)
        return result

    def _parse_response(self, entry: QueuedRequest, resp: TransportResponse) -> Dict[str, Any]:
        host = self._session.server_host
        if resp.status_code != 200:
            message = f"Network error {resp.status_code} while contacting Enginesis at {host} for {entry.fn}"
            logger.debug(message)
            return error_response(entry.fn, entry.state_seq, ErrorCode.SERVICE_ERROR, message)
        try:
            result = resp.json()
        except ValueError as exc:
            message = f"Invalid response from Enginesis at {host} for {entry.fn}: {exc}"
            logger.debug(message)
            return error_response(entry.fn, entry.state_seq, ErrorCode.SERVICE_ERROR, message)
        if not has_status(result):
            message = f"Enginesis service error from {host} for {entry.fn}: response has no status"
            logger.debug(message)
            return error_response(entry.fn, entry.state_seq, ErrorCode.SERVICE_ERROR, message)
        result["fn"] = entry.fn
        return result

    def _deliver(
        self,
        result: Dict[str, Any],
        callback: Optional[ResultCallback],
        entry: Optional[QueuedRequest] = None,
        preprocess: bool = True,
    ) -> None:
        if preprocess and self._preprocessor is not None:
            try:
                self._preprocessor(result)
            except Exception as exc:  # noqa: BLE001
                logger.warning("result preprocessing failed for %s: %s", result.get("fn"), exc)
        handler = callback or self._default_subscriber
        if handler is not None:
            try:
                handler(result)
            except Exception as exc:  # noqa: BLE001
                logger.warning("result callback failed for %s: %s", result.get("fn"), exc)
        if entry is not None and entry.future is not None and not entry.future.done():
            entry.future.set_result(result)

    def _remove(self, entry: QueuedRequest) -> None:
        entry.state_status = StateStatus.DONE
        self._queue = [e for e in self._queue if e.state_seq != entry.state_seq]
        if self._persisted:
            if self._queue:
                self._save_queue()
            else:
                self._remove_persisted()

    def _save_queue(self) -> None:
        try:
            self._storage.save_object(SERVICE_QUEUE_KEY, [e.to_dict() for e in self._queue])
        except OSError as exc:
            logger.error("failed to persist the service queue: %s", exc)
            return
        self._persisted = True

    def _remove_persisted(self) -> None:
        try:
            self._storage.remove_object(SERVICE_QUEUE_KEY)
        except OSError as exc:
            logger.error("failed to clear the persisted service queue: %s", exc)
            return
        self._persisted = False


__all__ = ["ServiceQueue"]
