"""File storage collaborator for external SOP documents (PDF uploads).

The engine never interprets stored files.  It hands an upload to a
FileStorage, keeps the opaque locator string the storage returns, and
later asks the storage for a time-limited URL for that locator.

Current backends:
  LocalFileStorage — files under a directory on local disk; download URLs
                     carry an itsdangerous-signed token that expires.

Locator format (LocalFileStorage):
    "<document_id>/<node_id>/<unix_ms>_<secure_filename>"
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import BinaryIO

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.utils import secure_filename

from sopdesk.core.exceptions import NotFoundError, TransientStoreError, ValidationError

logger = logging.getLogger(__name__)

_DEFAULT_URL_TTL = 3600  # seconds
_TOKEN_SALT = "sop-file-download"


class FileStorage(ABC):
    """Interface every storage backend implements."""

    @abstractmethod
    def upload(self, document_id: str, node_id: str, filename: str, stream: BinaryIO) -> str:
        """Persist ``stream`` and return an opaque locator."""

    @abstractmethod
    def signed_url(self, locator: str, expires_in: int | None = None) -> str:
        """Return a URL from which the file can be retrieved for a limited time.

        ``expires_in`` must be positive and is capped at the storage's own URL lifetime.
        """

    @abstractmethod
    def resolve_token(self, token: str) -> str:
        """Turn a signed-URL token back into its locator (raises on bad / expired tokens)."""

    @abstractmethod
    def open(self, locator: str) -> BinaryIO:
        """Open the stored file for reading."""


class LocalFileStorage(FileStorage):
    """Directory-backed storage with signed, expiring download tokens."""

    def __init__(
        self,
        root: str,
        secret_key: str,
        *,
        url_prefix: str = "/api/v1/sop/files",
        url_ttl: int = _DEFAULT_URL_TTL,
        max_bytes: int | None = None,
    ) -> None:
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.url_ttl = url_ttl
        self.max_bytes = max_bytes
        self._serializer = URLSafeTimedSerializer(secret_key, salt=_TOKEN_SALT)

    # ── Paths ────────────────────────────────────────────────────────────

    def _path_for(self, locator: str) -> str:
        path = os.path.abspath(os.path.join(self.root, locator))
        if os.path.commonpath([self.root, path]) != self.root:
            raise ValidationError("Invalid storage locator", details={"locator": locator})
        return path

    # ── FileStorage ──────────────────────────────────────────────────────

    def upload(self, document_id: str, node_id: str, filename: str, stream: BinaryIO) -> str:
        safe_name = secure_filename(filename or "")
        if not safe_name:
            raise ValidationError("A file name is required", details={"filename": filename})

        locator = f"{document_id}/{node_id}/{int(time.time() * 1000)}_{safe_name}"
        path = self._path_for(locator)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            written = 0
            with open(path, "wb") as fh:
                while True:
                    chunk = stream.read(64 * 1024)
                    if not chunk:
                        break
                    written += len(chunk)
                    if self.max_bytes is not None and written > self.max_bytes:
                        raise ValidationError(
                            f"File exceeds {self.max_bytes} bytes",
                            details={"filename": safe_name},
                        )
                    fh.write(chunk)
        except ValidationError:
            if os.path.exists(path):
                os.remove(path)
            raise
        except OSError as exc:
            logger.exception("Storage upload failed for %s", locator)
            raise TransientStoreError("file_upload", exc) from exc

        logger.info("Stored external document %s (%d bytes)", locator, written)
        return locator

    def signed_url(self, locator: str, expires_in: int | None = None) -> str:
        self._path_for(locator)
        ttl = self.url_ttl
        if expires_in is not None:
            if expires_in <= 0:
                raise ValidationError(
                    "expires_in must be a positive number of seconds",
                    details={"expires_in": "must be > 0"},
                )
            # Never longer than the configured lifetime
            ttl = min(expires_in, self.url_ttl)
        token = self._serializer.dumps({"locator": locator, "ttl": ttl})
        return f"{self.url_prefix}/{token}"

    def resolve_token(self, token: str) -> str:
        try:
            payload = self._serializer.loads(token, max_age=None)
        except BadSignature as exc:
            raise NotFoundError(resource="StoredFile") from exc
        ttl = min(int(payload.get("ttl") or self.url_ttl), self.url_ttl)
        try:
            payload = self._serializer.loads(token, max_age=ttl)
        except SignatureExpired as exc:
            raise NotFoundError(resource="StoredFile") from exc
        return payload["locator"]

    def open(self, locator: str) -> BinaryIO:
        path = self._path_for(locator)
        if not os.path.isfile(path):
            raise NotFoundError(resource="StoredFile", resource_id=locator)
        return open(path, "rb")


def init_storage(app) -> FileStorage:
    """Create the configured storage and register it as app.extensions["sop_storage"]."""
    root = app.config.get("SOP_STORAGE_ROOT") or os.path.join(app.instance_path, "sop-files")
    storage = LocalFileStorage(
        root,
        app.config["SECRET_KEY"],
        url_ttl=app.config.get("SOP_SIGNED_URL_TTL", _DEFAULT_URL_TTL),
        max_bytes=app.config.get("SOP_MAX_UPLOAD_BYTES"),
    )
    app.extensions["sop_storage"] = storage
    app.logger.info("SOP file storage at %s", storage.root)
    return storage


def get_storage(app=None) -> FileStorage:
    """Return the storage registered on ``app`` (defaults to current_app)."""
    if app is None:
        from flask import current_app
        app = current_app
    return app.extensions["sop_storage"]
