"""Small text helpers."""

import re
import unicodedata


def slugify(value: str, max_length: int = 120) -> str:
    """Lower-case ASCII slug with single dashes, e.g. `IELTS Prep 2024` -> `ielts-prep-2024`."""
    value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value).strip("-").lower()
    return value[:max_length].rstrip("-") or "item"


def unique_slug(base: str, exists) -> str:
    """Append `-2`, `-3`, ... to `base` until `exists(slug)` is False."""
    slug = base
    n = 2
    while exists(slug):
        slug = f"{base}-{n}"
        n += 1
    return slug


def mask_secret(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 8) + value[-4:]
