"""
Storage Service - hosted object storage over its REST API.
Uploads, lists, deletes and resolves public URLs for stored images,
plus per-user helpers for the reference images used in face matching.
"""

import logging
import os
import uuid
from typing import List, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = 'default'


class StorageError(Exception):
    """Raised when the storage backend rejects or fails a request."""


def split_storage_path(path: str, default_bucket: str = DEFAULT_BUCKET):
    """
    Split '<bucket>/<key>' into (bucket, key).
    A path without '/' lives in the default bucket.
    """
    path = path.lstrip('/')
    if '/' not in path:
        return default_bucket, path
    bucket, key = path.split('/', 1)
    return bucket, key


class StorageClient:
    """Thin client for the storage REST endpoints (/storage/v1)."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, **extra) -> dict:
        headers = {
            'apikey': self.api_key,
            'Authorization': f'Bearer {self.api_key}',
        }
        headers.update(extra)
        return headers

    def _url(self, *parts) -> str:
        return '/'.join([f'{self.base_url}/storage/v1'] + [quote(p, safe='/') for p in parts])

    def _check(self, resp, action: str):
        if resp.status_code >= 400:
            raise StorageError(f"{action} failed ({resp.status_code}): {resp.text}")

    def public_url(self, bucket: str, key: str) -> str:
        return self._url('object', 'public', bucket, key)

    def upload(self, bucket: str, key: str, data: bytes,
               content_type: str = 'image/jpeg', upsert: bool = True) -> str:
        """Upload bytes and return the stored path '<bucket>/<key>'."""
        try:
            resp = self.session.post(
                self._url('object', bucket, key),
                data=data,
                headers=self._headers(**{
                    'Content-Type': content_type,
                    'x-upsert': 'true' if upsert else 'false',
                    'cache-control': '3600',
                }),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Upload of {bucket}/{key} failed: {e}") from e
        self._check(resp, f"Upload of {bucket}/{key}")
        logger.info(f"Uploaded {bucket}/{key} ({len(data)} bytes)")
        return f'{bucket}/{key}'

    def remove(self, bucket: str, keys: List[str]) -> list:
        try:
            resp = self.session.delete(
                self._url('object', bucket),
                json={'prefixes': keys},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Delete from {bucket} failed: {e}") from e
        self._check(resp, f"Delete from {bucket}")
        logger.info(f"Removed {len(keys)} object(s) from {bucket}")
        return resp.json()

    def list(self, bucket: str, prefix: str = '') -> List[dict]:
        """List objects under a prefix, newest first, each with its public url."""
        try:
            resp = self.session.post(
                self._url('object', 'list', bucket),
                json={
                    'prefix': prefix,
                    'limit': 100,
                    'offset': 0,
                    'sortBy': {'column': 'created_at', 'order': 'desc'},
                },
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Listing {bucket}/{prefix} failed: {e}") from e
        self._check(resp, f"Listing {bucket}/{prefix}")

        items = []
        for entry in resp.json():
            key = f"{prefix.rstrip('/')}/{entry['name']}" if prefix else entry['name']
            items.append({**entry, 'path': f'{bucket}/{key}', 'url': self.public_url(bucket, key)})
        return items


class UserImageStore:
    """Per-user reference images stored as '<bucket>/<user_id>/<file>'."""

    def __init__(self, storage: StorageClient, bucket: str = 'selfie-images'):
        self.storage = storage
        self.bucket = bucket

    def upload_image(self, user_id: str, data: bytes, filename: str,
                     name: Optional[str] = None, content_type: str = 'image/jpeg') -> dict:
        """
        Store an image for a user. An explicit name replaces the file's
        base name but keeps its extension.
        """
        ext = os.path.splitext(filename)[1]
        final_name = f'{name}{ext}' if name else (filename or f'{uuid.uuid4().hex}.jpg')
        key = f'{user_id}/{final_name}'
        path = self.storage.upload(self.bucket, key, data, content_type=content_type, upsert=True)
        return {'path': path, 'url': self.storage.public_url(self.bucket, key)}

    def get_image_url(self, user_id: str, image_name: str) -> str:
        return self.storage.public_url(self.bucket, f'{user_id}/{image_name}')

    def delete_image(self, user_id: str, image_name: str) -> list:
        return self.storage.remove(self.bucket, [f'{user_id}/{image_name}'])

    def list_images(self, user_id: str) -> List[dict]:
        return self.storage.list(self.bucket, prefix=user_id)

    def reference_paths(self, user_id: str) -> List[str]:
        """Storage paths of the user's images, for use as match candidates."""
        return [item['path'] for item in self.list_images(user_id)]
