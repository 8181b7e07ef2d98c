import logging
import os
import re
from typing import List, Optional, Tuple
from uuid import uuid4

import cloudinary
import cloudinary.uploader
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
UNSUPPORTED_IMAGE_MESSAGE = (
    "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
)
# Public id inside a Cloudinary delivery URL: after /upload/, minus version and extension.
_CLOUDINARY_PUBLIC_ID = re.compile(r"/upload/(?:v\d+/)?(.+?)(?:\.[^./]+)?$")


class StorageError(Exception):
    """Raised when the object store cannot persist or delete an image."""


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in ALLOWED_IMAGE_EXTENSIONS


def validate_image_files(image_files) -> Tuple[list, Optional[str]]:
    accepted = []
    for image_file in image_files or []:
        if not image_file or not getattr(image_file, "filename", ""):
            continue
        original_filename = secure_filename(image_file.filename)
        if not original_filename:
            return [], "Please choose a valid file name."
        if not allowed_image_extension(original_filename):
            return [], UNSUPPORTED_IMAGE_MESSAGE
        accepted.append(image_file)
    return accepted, None


class LocalImageStorage:
    """Stores uploads in the products upload directory, returning bare filenames."""

    def __init__(self, directory: str):
        self.directory = directory

    def save(self, image_file) -> str:
        original_filename = secure_filename(image_file.filename)
        extension = os.path.splitext(original_filename)[1].lower()
        unique_filename = f"{uuid4().hex}{extension}"
        destination = os.path.join(self.directory, unique_filename)
        try:
            image_file.save(destination)
        except OSError as exc:
            raise StorageError(f"Could not store {original_filename}") from exc
        return unique_filename

    def save_many(self, image_files) -> Tuple[List[str], Optional[str]]:
        accepted, image_error = validate_image_files(image_files)
        if image_error:
            return [], image_error

        saved_filenames: List[str] = []
        for image_file in accepted:
            try:
                saved_filenames.append(self.save(image_file))
            except StorageError:
                for filename in saved_filenames:
                    self.delete(filename)
                raise
        return saved_filenames, None

    def delete(self, identifier: str) -> None:
        target = os.path.join(self.directory, os.path.basename(str(identifier)))
        try:
            os.remove(target)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Unable to remove stored image %s: %s", target, exc)

    def discard(self, filenames) -> None:
        for filename in filenames or []:
            self.delete(filename)


class CloudinaryImageStorage:
    """Uploads images to Cloudinary, returning their public HTTPS URLs."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "use-and-sell/products",
    ):
        self.cloud_name = cloud_name
        self.folder = folder
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    def save(self, image_file) -> Tuple[str, str]:
        try:
            result = cloudinary.uploader.upload(
                image_file.stream,
                folder=self.folder,
                resource_type="auto",
            )
        except Exception as exc:
            logger.exception("Cloudinary upload failed filename=%r", image_file.filename)
            raise StorageError(str(exc) or "Cloudinary upload failed") from exc

        url = (result or {}).get("secure_url")
        if not url:
            raise StorageError("Upload failed: no result returned")
        return url, result.get("public_id", "")

    def save_many(self, image_files) -> Tuple[List[str], Optional[str]]:
        accepted, image_error = validate_image_files(image_files)
        if image_error:
            return [], image_error

        urls: List[str] = []
        public_ids: List[str] = []
        for image_file in accepted:
            try:
                url, public_id = self.save(image_file)
            except StorageError:
                for uploaded_id in public_ids:
                    try:
                        self.delete(uploaded_id)
                    except StorageError:
                        logger.warning("Unable to roll back upload %s", uploaded_id)
                raise
            urls.append(url)
            public_ids.append(public_id)
        return urls, None

    def delete(self, identifier: str) -> None:
        try:
            cloudinary.uploader.destroy(identifier)
        except Exception as exc:
            raise StorageError(str(exc) or "Cloudinary delete failed") from exc

    def discard(self, urls) -> None:
        for url in urls or []:
            match = _CLOUDINARY_PUBLIC_ID.search(str(url))
            if not match:
                logger.warning("Cannot derive Cloudinary public id from %s", url)
                continue
            try:
                self.delete(match.group(1))
            except StorageError as exc:
                logger.warning("Unable to discard upload %s: %s", url, exc)


def build_image_storage(config):
    cloud_name = config.get("CLOUDINARY_CLOUD_NAME")
    api_key = config.get("CLOUDINARY_API_KEY")
    api_secret = config.get("CLOUDINARY_API_SECRET")
    if cloud_name and api_key and api_secret:
        logger.info("Storing product images on Cloudinary (%s)", cloud_name)
        return CloudinaryImageStorage(cloud_name, api_key, api_secret)

    if cloud_name or api_key or api_secret:
        logger.warning(
            "Cloudinary credentials not fully configured; storing images locally."
        )
    return LocalImageStorage(config["PRODUCT_UPLOAD_FOLDER"])
