"""Filesystem blob store.

Objects live under ``<root>/<bucket>/<key>`` and are published at
``<public_base_url>/<bucket>/<key>``, which the app serves from
``/files/<bucket>/<key>``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

from salesflow.errors import UpstreamFailure

logger = logging.getLogger(__name__)

PHOTOS_BUCKET = 'session-photos'
CONTRACTS_BUCKET = 'contracts'


class BlobStore:
    def __init__(self, root: str, public_base_url: str) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip('/')

    def _path(self, bucket: str, key: str) -> Path:
        path = (self.root / bucket / key).resolve()
        bucket_root = (self.root / bucket).resolve()
        if bucket_root not in path.parents:
            raise ValueError(f"key escapes bucket: {key!r}")
        return path

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/{bucket}/{key}"

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        path = self._path(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'wb') as fh:
                fh.write(data)
        except OSError as e:
            raise UpstreamFailure('storage', f"could not write {bucket}/{key}: {e}") from e
        logger.info("stored %s/%s (%s, %d bytes)", bucket, key, content_type, len(data))
        return self.public_url(bucket, key)

    def delete(self, bucket: str, key: str) -> None:
        path = self._path(bucket, key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("blob %s/%s already gone", bucket, key)
        except OSError as e:
            raise UpstreamFailure('storage', f"could not delete {bucket}/{key}: {e}") from e

    def key_from_url(self, url: str) -> Optional[Tuple[str, str]]:
        """Split a public URL back into ``(bucket, key)``; None if it is not ours."""
        base = urlparse(self.public_base_url)
        parsed = urlparse(url or '')
        if (parsed.scheme, parsed.netloc) != (base.scheme, base.netloc):
            return None
        prefix = base.path.rstrip('/') + '/'
        if not parsed.path.startswith(prefix):
            return None
        bucket, _, key = parsed.path[len(prefix):].partition('/')
        if not bucket or not key:
            return None
        return bucket, key
