"""Image reference handling for product listings.

A stored image reference is one of three shapes: an absolute URL
(``http://`` / ``https://``), a server-relative ``/uploads/...`` path, or a
bare filename living in the local products upload directory.
"""

import json
import logging
import os
import posixpath
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ABSOLUTE_PREFIXES = ("http://", "https://")
UPLOADS_PREFIX = "/uploads/"
PRODUCT_UPLOADS_PREFIX = "/uploads/products/"

_BACKSLASHES = re.compile(r"\\+")


@dataclass(frozen=True)
class Absent:
    def as_list(self) -> list:
        return []


@dataclass(frozen=True)
class Single:
    value: object

    def as_list(self) -> list:
        return [self.value]


@dataclass(frozen=True)
class Many:
    values: Tuple[object, ...]

    def as_list(self) -> list:
        return list(self.values)


ABSENT = Absent()


def field_value(source, name: str):
    """Read ``name`` from a form MultiDict or a JSON dict as Absent/Single/Many."""
    if source is None:
        return ABSENT

    getlist = getattr(source, "getlist", None)
    if getlist is not None:
        values = getlist(name)
        if not values:
            return ABSENT
        if len(values) == 1:
            return Single(values[0])
        return Many(tuple(values))

    if name not in source:
        return ABSENT
    value = source.get(name)
    if value is None:
        return ABSENT
    if isinstance(value, (list, tuple)):
        return Many(tuple(value))
    return Single(value)


def normalize_reference(value: str) -> str:
    return _BACKSLASHES.sub("/", value).strip()


def parse_kept_images(value) -> list:
    if isinstance(value, Many):
        kept = []
        for item in value.values:
            if isinstance(item, str) and item.lstrip().startswith("["):
                kept.extend(parse_kept_images(item))
            else:
                kept.append(item)
        return kept
    if isinstance(value, Single):
        value = value.value
    elif isinstance(value, Absent):
        return []

    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return []
    if not isinstance(value, str):
        return []

    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def _clean(references: Optional[Iterable]) -> list:
    cleaned = []
    for reference in references or []:
        if not reference:
            continue
        if isinstance(reference, str):
            reference = normalize_reference(reference)
            if not reference:
                continue
        cleaned.append(reference)
    return cleaned


def merge_image_references(
    kept: Optional[Iterable] = None,
    external: Optional[Iterable] = None,
    uploaded: Optional[Iterable] = None,
) -> list:
    """Return the stored image list: kept, then external URLs, then uploads.

    Falsy entries are dropped and separators normalized; duplicates stay.
    """
    return _clean(list(kept or []) + list(external or []) + list(uploaded or []))


def display_image_url(reference, base_url: str) -> str:
    base = base_url.rstrip("/")
    if not isinstance(reference, str):
        return f"{base}/uploads/products/{str(reference).lstrip('/')}"

    value = normalize_reference(reference)
    if value.startswith(ABSOLUTE_PREFIXES):
        return value
    if value.startswith(PRODUCT_UPLOADS_PREFIX):
        return f"{base}{value}"
    if value.startswith(UPLOADS_PREFIX):
        filename = value.split("/")[-1]
        return f"{base}/uploads/products/{filename}"
    return f"{base}/uploads/products/{value.lstrip('/')}"


def display_images(references: Optional[Iterable], base_url: str) -> List[str]:
    return [display_image_url(reference, base_url) for reference in references or []]


def local_image_filename(reference) -> Optional[str]:
    if not reference:
        return None
    value = normalize_reference(str(reference))
    if value.startswith(ABSOLUTE_PREFIXES):
        return None
    filename = posixpath.basename(value)
    if filename in ("", ".", ".."):
        return None
    return filename


def stored_image_filename(reference):
    """Reduce a legacy path reference to its filename; URLs are kept."""
    if not reference or not isinstance(reference, str):
        return reference
    if reference.startswith(ABSOLUTE_PREFIXES):
        return reference
    return reference.rsplit("/", 1)[-1]


def remove_local_images(references: Optional[Iterable], directory: str) -> List[str]:
    """Delete the local files behind ``references``; failures are only logged."""
    removed: List[str] = []
    for reference in references or []:
        filename = local_image_filename(reference)
        if not filename:
            continue
        target = os.path.join(directory, filename)
        try:
            os.remove(target)
        except FileNotFoundError:
            logger.warning("Could not remove %s: file not found", target)
            continue
        except OSError as exc:
            logger.warning("Could not remove %s: %s", target, exc)
            continue
        logger.info("Removed file %s", target)
        removed.append(target)
    return removed
