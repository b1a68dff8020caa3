"""Provider registry for moyaposylka.

Expose a mapping from provider name to its provider class, so the CLI and
other clients can construct providers in one place.
"""
from __future__ import annotations

from .base import ProviderBase
from .moyaposylka import MoyaposylkaProvider

REGISTRY: dict[str, type[ProviderBase]] = {
    MoyaposylkaProvider.provider: MoyaposylkaProvider,
}


def get_provider_names() -> list[str]:
    return sorted(REGISTRY.keys())
