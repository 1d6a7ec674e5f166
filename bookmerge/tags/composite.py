"""Ordered tag provider chain.

Responsibilities:
- Apply providers in insertion order, later ones overwriting earlier ones.
- Apply the optional series prefix to the long description.
- Fill still-missing fields from the first source item's embedded tags.
"""

from __future__ import annotations

from collections.abc import Iterable

from .providers import TagProvider
from .record import TagRecord


def series_prefix(tag: TagRecord) -> str | None:
    """Return `"<series> <part>"`, or `None` when neither is set."""

    text = f"{tag.series or ''} {tag.series_part or ''}".strip()
    return text or None


class TagMergeComposite:
    """Chain of providers merged into one accumulated `TagRecord`."""

    def __init__(
        self,
        providers: Iterable[TagProvider] = (),
        *,
        prepend_series_to_longdesc: bool = False,
    ) -> None:
        self._providers: list[TagProvider] = list(providers)
        self.prepend_series_to_longdesc = prepend_series_to_longdesc

    def add(self, provider: TagProvider) -> None:
        """Append a provider; it overrides everything added before it."""

        self._providers.append(provider)

    @property
    def providers(self) -> list[TagProvider]:
        """Return providers in application order."""

        return list(self._providers)

    def improve(self, seed: TagRecord | None = None, fallback: TagRecord | None = None) -> TagRecord:
        """Run the chain and return the accumulated record.

        Args:
            seed: Initial record, typically empty.
            fallback: Source tags used only for fields no provider set.
        """

        accumulated = TagRecord().merge_overwrite(seed) if seed is not None else TagRecord()
        for provider in self._providers:
            accumulated.merge_overwrite(provider.produce(accumulated))

        if self.prepend_series_to_longdesc and accumulated.is_set("long_description"):
            prefix = series_prefix(accumulated)
            if prefix is not None:
                accumulated.long_description = (
                    f"{prefix}: {str(accumulated.long_description).lstrip()}"
                )

        if fallback is not None:
            accumulated.merge_missing(fallback)
        return accumulated
