"""
Blob storage for uploaded documents.

The workflow only persists the locator returned by ``store``; nothing else
in the platform reads files from disk directly.

    stored = get_storage().store(file_storage, folder="documents/12")
    # {"url": "/uploads/documents/12/3f9c...pdf", "id": "documents/12/3f9c...pdf", "checksum": "..."}
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from accredit.core.exceptions import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)


def allowed_extension(filename: str) -> bool:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return ext in current_app.config.get("ALLOWED_UPLOAD_EXTENSIONS", ())


class LocalBlobStorage:
    """Writes files under ``UPLOAD_FOLDER``; ids are paths relative to it."""

    def __init__(self, root: str):
        self.root = root

    def _path(self, blob_id: str) -> str:
        path = os.path.normpath(os.path.join(self.root, blob_id))
        if not path.startswith(os.path.normpath(self.root) + os.sep):
            raise ValidationError("Invalid storage locator", {"id": blob_id})
        return path

    def store(self, file, folder: str = "documents") -> dict:
        """Persist a werkzeug ``FileStorage``; returns ``{url, id, checksum, size}``."""
        original = secure_filename(file.filename or "") or "upload"
        ext = original.rsplit(".", 1)[-1].lower() if "." in original else "bin"
        blob_id = f"{folder.strip('/')}/{uuid.uuid4().hex}.{ext}"
        path = self._path(blob_id)

        data = file.read()
        max_bytes = current_app.config.get("MAX_UPLOAD_BYTES")
        if max_bytes and len(data) > max_bytes:
            raise ValidationError(
                f"File exceeds the {max_bytes // (1024 * 1024)} MB limit",
                {"size": len(data)},
            )

        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise UpstreamFailure("storage", f"could not write {blob_id}: {exc}") from exc

        logger.info("Stored blob %s (%d bytes)", blob_id, len(data))
        return {
            "url": f"/uploads/{blob_id}",
            "id": blob_id,
            "checksum": hashlib.sha256(data).hexdigest(),
            "size": len(data),
            "original_name": file.filename,
            "mime_type": file.mimetype,
        }

    def open(self, blob_id: str):
        path = self._path(blob_id)
        if not os.path.exists(path):
            raise UpstreamFailure("storage", f"blob {blob_id} is missing")
        return open(path, "rb")

    def delete(self, blob_id: str) -> None:
        try:
            os.remove(self._path(blob_id))
        except FileNotFoundError:
            logger.info("Blob %s already absent", blob_id)
        except OSError as exc:
            raise UpstreamFailure("storage", f"could not delete {blob_id}: {exc}") from exc


def get_storage() -> LocalBlobStorage:
    """Storage bound to the current app's ``UPLOAD_FOLDER``."""
    storage = current_app.extensions.get("blob_storage")
    if storage is None:
        storage = LocalBlobStorage(current_app.config["UPLOAD_FOLDER"])
        current_app.extensions["blob_storage"] = storage
    return storage
