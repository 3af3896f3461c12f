"""
Scan Session Module - Classroom QR Attendance

Drives the scan loop. A source (the camera plus QR decoder) hands over
decoded text one code at a time; each text is decoded into a payload and
recorded in the ledger. The session can be stopped from any thread, for
example when the page is hidden, and stopping twice is harmless.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from rollcall.modules.errors import InvalidPayload
from rollcall.modules.scan_decoder import decode_scan


class ScanSource:
    """Interface for the camera/decoder collaborator."""

    def read(self) -> Optional[str]:
        """Return the next decoded text, or None when no code is in view."""
        raise NotImplementedError

    def release(self) -> None:
        """Release the camera and any other device resources."""
        raise NotImplementedError


class ScanSession:
    """
    Pull loop between a ScanSource and the attendance ledger.
    ``on_result`` receives a dict per scan with ``accepted``, ``reason``,
    ``message`` and, when known, ``record``.
    """

    def __init__(self, source, ledger, on_result: Callable[[Dict[str, Any]], None] = None,
                 decoder: Callable[[str], Any] = decode_scan,
                 cooldown: float = 1.0, idle_wait: float = 0.05):
        """
        Initialize the scan session.

        Args:
            source: ScanSource providing decoded text
            ledger: AttendanceLedger receiving accepted scans
            on_result: Callback for each scan outcome
            decoder: Raw text to ScanPayload function
            cooldown (float): Pause after an accepted scan
            idle_wait (float): Pause when the source had nothing to read
        """
        self.source = source
        self.ledger = ledger
        self.on_result = on_result or (lambda result: None)
        self.decoder = decoder
        self.cooldown = cooldown
        self.idle_wait = idle_wait
        self.logger = logging.getLogger(__name__)

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._released = False
        self._thread = None
        self.scan_count = 0

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set() and not self._released

    def process(self, raw: str) -> Dict[str, Any]:
        """Decode and record one scanned text."""
        try:
            payload = self.decoder(raw)
        except InvalidPayload as e:
            self.logger.info(f"Rejected scan: {str(e)}")
            return {'accepted': False, 'record': None,
                    'reason': InvalidPayload.error_type, 'message': 'Invalid QR code format'}

        result = self.ledger.record_scan(payload)
        if result['accepted']:
            self.scan_count += 1
        return result

    def run(self) -> None:
        """Scan until stopped. Safe to run on the caller's thread."""
        self.logger.info("Scan session started")
        while not self._stop_event.is_set():
            with self._lock:
                if self._released:
                    break
                raw = self.source.read()
                if raw is not None and self._stop_event.is_set():
                    self.logger.info("Scan read while stopping was discarded")
                    break
                # recorded before stop() can release the source
                result = self.process(raw) if raw is not None else None

            if result is None:
                self._stop_event.wait(self.idle_wait)
                continue

            try:
                self.on_result(result)
            except Exception as e:
                self.logger.error(f"Scan result handler failed: {str(e)}")

            if result['accepted'] and self.cooldown > 0:
                # brief pause so one card is not read repeatedly
                self._stop_event.wait(self.cooldown)

        self.logger.info(f"Scan session ended after {self.scan_count} accepted scans")

    def start(self) -> threading.Thread:
        """Run the loop on a daemon thread."""
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = 5.0) -> None:
        """Stop scanning and release the source. Idempotent."""
        self._stop_event.set()
        with self._lock:
            if self._released:
                return
            self._released = True
            try:
                self.source.release()
            except Exception as e:
                self.logger.error(f"Error releasing scan source: {str(e)}")

        if (self._thread is not None and self._thread.is_alive()
                and self._thread is not threading.current_thread()):
            self._thread.join(timeout=timeout)
        self.logger.info("Scan session stopped")
