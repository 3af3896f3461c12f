"""
Scan Decoder Module - Classroom QR Attendance

Turns the raw text read from a student's QR code into a ScanPayload.
Student cards carry either a JSON object such as ``{"id": "S1", "name": "Asha"}``
or just the bare student id. The variant is resolved here once; the rest of
the system only sees ``payload.id`` and ``payload.name``.
"""

import json
import logging
from dataclasses import dataclass
from typing import Union

from rollcall.modules.errors import InvalidPayload

logger = logging.getLogger(__name__)


def default_student_name(student_id: str) -> str:
    return f"Student {student_id}"


@dataclass(frozen=True)
class StructuredPayload:
    """Payload decoded from a JSON object that carried an ``id``."""
    id: str
    name: str
    kind: str = 'structured'


@dataclass(frozen=True)
class BarePayload:
    """Payload where the whole scanned text is the student id."""
    id: str
    name: str
    kind: str = 'bare'


ScanPayload = Union[StructuredPayload, BarePayload]


def decode_scan(raw: str) -> ScanPayload:
    """
    Decode raw QR text into a ScanPayload.

    Args:
        raw (str): Text produced by the QR decoder

    Returns:
        ScanPayload: Structured payload when the text is a JSON object with
        an id, otherwise a bare payload using the whole text as the id

    Raises:
        InvalidPayload: if the text is empty
    """
    if raw is None or not str(raw).strip():
        raise InvalidPayload('Invalid QR code: empty scan')

    text = str(raw).strip()

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        decoded = None

    if isinstance(decoded, dict):
        student_id = decoded.get('id')
        if student_id is not None and str(student_id).strip():
            student_id = str(student_id).strip()
            name = decoded.get('name')
            name = str(name).strip() if name is not None else ''
            return StructuredPayload(id=student_id, name=name or default_student_name(student_id))
        logger.debug("Scanned JSON has no id, using raw text as the student id")

    return BarePayload(id=text, name=default_student_name(text))


class ScanDecoder:
    """Callable wrapper so the decoder can be injected like other components."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def decode(self, raw: str) -> ScanPayload:
        payload = decode_scan(raw)
        self.logger.debug(f"Decoded {payload.kind} scan for student {payload.id}")
        return payload

    __call__ = decode
