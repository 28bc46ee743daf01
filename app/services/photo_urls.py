"""Signed photo URL projection shared by discovery and matching."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable

import structlog

logger = structlog.get_logger("kindred.photo_urls")

UrlSigner = Callable[[str], str]


@dataclass
class PhotoURL:
    id: uuid.UUID
    url: str
    is_primary: bool
    display_order: int


def default_url_signer(path: str) -> str:
    from app.utils.storage import generate_signed_url

    return generate_signed_url(path)


def sign_photos(user: Any, url_signer: UrlSigner) -> list[PhotoURL]:
    """Signed URLs for the user's photos in display order.

    A photo whose URL cannot be signed is left out rather than failing the
    whole response.
    """
    signed: list[PhotoURL] = []
    for photo in sorted(user.photos or [], key=lambda p: p.display_order):
        try:
            url = url_signer(photo.storage_path)
        except Exception as exc:
            logger.warning(
                "photo_url_signing_failed",
                photo_id=str(photo.id),
                error=str(exc),
            )
            continue
        signed.append(
            PhotoURL(
                id=photo.id,
                url=url,
                is_primary=photo.is_primary,
                display_order=photo.display_order,
            )
        )
    return signed
