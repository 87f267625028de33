"""Utility helpers for the AIOCatalogs service."""

from __future__ import annotations

import random
from typing import Iterable, Sequence, TypeVar

T = TypeVar("T")

COMPOSITE_ID_SEPARATOR = "-"
MANIFEST_SUFFIX = "/manifest.json"


def shuffled(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """Return a uniformly shuffled copy of ``items`` (Fisher-Yates).

    The input is never mutated. Without ``rng`` every call draws from a
    fresh system-backed source, so orders differ between calls.
    """

    source = rng if rng is not None else random.SystemRandom()
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = source.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def composite_catalog_id(addon_id: str, inner_id: str) -> str:
    """Namespace an inner catalog id with its addon's manifest id."""

    return f"{addon_id}{COMPOSITE_ID_SEPARATOR}{inner_id}"


def inner_id_fragment(composite_id: str, addon_id: str) -> str | None:
    """Return what follows ``{addon_id}-`` in ``composite_id``, if anything.

    Ids may contain hyphens themselves, so this only answers whether the
    composite id could belong to ``addon_id``; it never splits blindly.
    """

    if not addon_id or not composite_id.startswith(addon_id):
        return None
    suffix = composite_id[len(addon_id):]
    if not suffix.startswith(COMPOSITE_ID_SEPARATOR):
        return None
    return suffix[len(COMPOSITE_ID_SEPARATOR):]


def addon_base_url(manifest_url: str) -> str:
    """Return the addon endpoint for a manifest URL, with one trailing slash."""

    endpoint = manifest_url.strip()
    if endpoint.endswith(MANIFEST_SUFFIX):
        endpoint = endpoint[: -len(MANIFEST_SUFFIX)]
    return endpoint.rstrip("/") + "/"


def unique_extend(target: list[T], values: Iterable[T] | None) -> list[T]:
    """Append values not yet present in ``target``, keeping first-seen order."""

    if not values:
        return target
    for value in values:
        if value not in target:
            target.append(value)
    return target
