"""
Document Scanner - classifies an uploaded image with a hosted vision model.
Labels: selfie, licence plate (with number), national ID (with number), unknown.
Never raises: any failure degrades to 'unknown'.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

SELFIE = 'selfie'
LICENCE_PLATE = 'licence_plate'
NATIONAL_ID = 'national_id'
UNKNOWN = 'unknown'

SCAN_PROMPT = (
    "Analyze this image and identify if it contains: 1) a selfie/human face, "
    "2) a licence plate (extract the number), 3) a national ID card (extract the ID number), "
    "or 4) none of these (unknown). Return ONLY ONE of these exact formats: "
    "'selfie', 'licence plate: NUMBER', 'national id: NUMBER', or 'unknown'."
)

_PREFIXES = [
    ('licence plate:', LICENCE_PLATE),
    ('license plate:', LICENCE_PLATE),
    ('national id:', NATIONAL_ID),
]


@dataclass(frozen=True)
class ScanResult:
    type: str = UNKNOWN
    id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {'type': self.type}
        if self.id:
            data['id'] = self.id
        return data


def reply_text(content) -> str:
    """Flatten chat message content (a string or a list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return ' '.join(
            part['text'] for part in content
            if isinstance(part, dict) and isinstance(part.get('text'), str)
        )
    return ''


def parse_scan_response(text) -> ScanResult:
    """Parse the model's constrained reply by prefix."""
    text = reply_text(text).strip().strip("'\"")
    lowered = text.lower()

    if lowered.startswith('selfie'):
        return ScanResult(SELFIE)

    for prefix, doc_type in _PREFIXES:
        if lowered.startswith(prefix):
            value = text.split(':', 1)[1].strip()
            return ScanResult(doc_type, value or None)

    return ScanResult(UNKNOWN)


class DocumentScanner:
    """Calls an OpenAI-compatible chat completions endpoint with the image URL."""

    def __init__(self, api_url: str, api_key: str, model: str = 'gpt-4o-mini',
                 timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, image_url: str):
        resp = self.session.post(
            self.api_url,
            json={
                'model': self.model,
                'messages': [{
                    'role': 'user',
                    'content': [
                        {'type': 'text', 'text': SCAN_PROMPT},
                        {'type': 'image_url', 'image_url': {'url': image_url}},
                    ],
                }],
            },
            headers={'Authorization': f'Bearer {self.api_key}'},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        choices = resp.json().get('choices') or []
        if not choices:
            return ''
        return (choices[0].get('message') or {}).get('content') or ''

    def classify(self, image_url: str) -> ScanResult:
        try:
            reply = self._request(image_url)
            result = parse_scan_response(reply)
        except Exception as e:
            logger.error(f"Document scan failed for {image_url}: {e}")
            return ScanResult(UNKNOWN)

        logger.info(f"Document scan: {reply!r} -> {result.type}")
        return result
