from .provider import ConfigProvider, EnvConfigProvider, InMemoryConfigProvider, HybridConfigProvider
from .settings import AccessSettings

__all__ = [
    "ConfigProvider",
    "EnvConfigProvider",
    "InMemoryConfigProvider",
    "HybridConfigProvider",
    "AccessSettings",
]
