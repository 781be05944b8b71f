"""Provider code -> adapter lookup."""

from staywatch.providers.awayresorts import AwayResortsAdapter
from staywatch.providers.base import ProviderAdapter
from staywatch.providers.butlins import ButlinsAdapter
from staywatch.providers.centerparcs import CenterParcsAdapter
from staywatch.providers.haven import HavenAdapter
from staywatch.providers.hoseasons import HoseasonsAdapter
from staywatch.providers.parkdean import ParkdeanAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    adapter.code: adapter
    for adapter in (
        HoseasonsAdapter,
        HavenAdapter,
        CenterParcsAdapter,
        ButlinsAdapter,
        ParkdeanAdapter,
        AwayResortsAdapter,
    )
}

_instances: dict[str, ProviderAdapter] = {}


def get_adapter(provider_code: str) -> ProviderAdapter:
    """Adapters are stateless, so one shared instance per provider."""
    code = (provider_code or "").lower().strip()
    if code not in ADAPTERS:
        raise KeyError(f"No adapter for provider {provider_code!r}")
    if code not in _instances:
        _instances[code] = ADAPTERS[code]()
    return _instances[code]


def list_adapters() -> list[ProviderAdapter]:
    return [get_adapter(code) for code in ADAPTERS]


def supported_providers() -> list[str]:
    return list(ADAPTERS)
