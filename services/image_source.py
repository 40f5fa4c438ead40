"""
Image Source - resolves image references to decoded BGR frames.

A reference is one of:
    StoragePath  '<bucket>/<key>' in hosted storage
    ImageUrl     any http(s) URL
    ImageBytes   raw encoded image bytes (uploads, data URLs)
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional, Union

import cv2
import numpy as np
import requests

from engines.facial_recognition.matcher import LoadError
from services.storage_service import StorageClient, split_storage_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoragePath:
    path: str

    def __str__(self):
        return self.path


@dataclass(frozen=True)
class ImageUrl:
    url: str

    def __str__(self):
        return self.url


@dataclass(frozen=True)
class ImageBytes:
    data: bytes
    name: Optional[str] = None

    def __str__(self):
        return self.name or f'<{len(self.data)} bytes>'


ImageReference = Union[StoragePath, ImageUrl, ImageBytes]


def parse_reference(value) -> ImageReference:
    """Map a raw string (or existing reference) to an ImageReference."""
    if isinstance(value, (StoragePath, ImageUrl, ImageBytes)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return ImageBytes(bytes(value))
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid image reference: {value!r}")

    value = value.strip()
    if value.startswith(('http://', 'https://')):
        return ImageUrl(value)
    if value.startswith('data:'):
        if ',' not in value:
            raise ValueError("Malformed data URL")
        try:
            return ImageBytes(base64.b64decode(value.split(',', 1)[1]), name='data-url')
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Malformed data URL: {e}") from e
    return StoragePath(value)


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes to a BGR array, or raise LoadError."""
    if not data:
        raise LoadError("Empty image data")
    frame = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise LoadError("Image data could not be decoded")
    return frame


class ImageSource:
    """Fetches and decodes images for the match engine."""

    def __init__(self, storage: StorageClient, timeout: float = 10.0,
                 default_bucket: str = 'selfie-images', max_bytes: int = 10 * 1024 * 1024,
                 session: Optional[requests.Session] = None):
        self.storage = storage
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.default_bucket = default_bucket
        self.session = session or requests.Session()

    def public_url(self, reference) -> Optional[str]:
        reference = parse_reference(reference)
        if isinstance(reference, ImageUrl):
            return reference.url
        if isinstance(reference, StoragePath):
            bucket, key = split_storage_path(reference.path, self.default_bucket)
            return self.storage.public_url(bucket, key)
        return None

    def fetch(self, reference) -> bytes:
        """Return the raw encoded bytes behind a reference."""
        try:
            reference = parse_reference(reference)
        except ValueError as e:
            raise LoadError(str(e)) from e

        if isinstance(reference, ImageBytes):
            return reference.data

        url = self.public_url(reference)
        try:
            resp = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Fetching {url} failed: {e}")
            raise LoadError(f"Failed to load image from URL: {url}") from e
        try:
            resp.raise_for_status()
            declared = resp.headers.get('Content-Length')
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise LoadError(f"Image exceeds {self.max_bytes} bytes")

            chunks = []
            received = 0
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                received += len(chunk)
                if received > self.max_bytes:
                    raise LoadError(f"Image exceeds {self.max_bytes} bytes")
                chunks.append(chunk)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Fetching {url} failed: {e}")
            raise LoadError(f"Failed to load image from URL: {url}") from e
        finally:
            resp.close()
        return b''.join(chunks)

    def load(self, reference) -> np.ndarray:
        return decode_image(self.fetch(reference))
