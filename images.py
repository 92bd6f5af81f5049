"""
Product image uploads.

Batches are validated as a whole before anything is written: one bad file
or one image too many rejects the entire batch.
"""
import logging
import mimetypes
import os
import posixpath
import uuid
from dataclasses import dataclass
from typing import List, Optional

import gridfs

from schemas import MAX_PRODUCT_IMAGES

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
IMAGE_ROUTE = "/api/images/"


class ImageRejected(Exception):
    """The upload batch failed validation; nothing was stored."""


@dataclass
class ImageUpload:
    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def validate_image_batch(existing_count: int, files: List[ImageUpload]):
    if not files:
        raise ImageRejected("Please choose at least one image.")

    available = MAX_PRODUCT_IMAGES - existing_count
    if len(files) > available:
        raise ImageRejected(
            f"A product can have at most {MAX_PRODUCT_IMAGES} images. "
            f"It has {existing_count}, so you can add {max(available, 0)} more "
            f"but selected {len(files)}."
        )

    for upload in files:
        if not upload.content_type or not upload.content_type.startswith("image/"):
            raise ImageRejected(f"{upload.filename} is not an image file.")
        if upload.size > MAX_IMAGE_BYTES:
            raise ImageRejected(f"{upload.filename} is larger than 5MB.")


def _extension(upload: ImageUpload) -> str:
    ext = posixpath.splitext(upload.filename or "")[1].lower()
    if not ext:
        ext = mimetypes.guess_extension(upload.content_type or "") or ""
    return ext


class ImageStorage:
    """GridFS bucket addressed by path: products/<product id>/<random hex><ext>."""

    def __init__(self, database, bucket: str = "images", base_url: str = PUBLIC_BASE_URL):
        self.fs = gridfs.GridFS(database, collection=bucket)
        self.base_url = base_url

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{IMAGE_ROUTE}{path}"

    def path_from_url(self, url: str) -> Optional[str]:
        marker = url.find(IMAGE_ROUTE)
        if marker == -1:
            return None
        return url[marker + len(IMAGE_ROUTE):]

    def upload(self, product_id: str, upload: ImageUpload) -> str:
        path = f"products/{product_id}/{uuid.uuid4().hex}{_extension(upload)}"
        self.fs.put(upload.data, filename=path, metadata={"content_type": upload.content_type})
        logger.info("stored image %s (%d bytes)", path, upload.size)
        return self.url_for(path)

    def open(self, path: str):
        """Return the stored GridOut or None; the content type is in .metadata."""
        return self.fs.find_one({"filename": path})

    def delete(self, path: str):
        for stored in self.fs.find({"filename": path}):
            self.fs.delete(stored._id)

    def delete_url(self, url: str):
        path = self.path_from_url(url)
        if path:
            self.delete(path)
