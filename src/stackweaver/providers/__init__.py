"""Provider adapters and built-in registrations."""

# Import built-in providers for side effects (registration)
from stackweaver.providers import gcloud as _gcloud  # noqa: F401
from stackweaver.providers import memory as _memory  # noqa: F401
from stackweaver.providers.base import CREATE_OPERATIONS, ProviderAdapter, create_resource
from stackweaver.providers.registry import (
    create_provider,
    list_providers,
    register_provider,
)

__all__ = [
    "CREATE_OPERATIONS",
    "ProviderAdapter",
    "create_provider",
    "create_resource",
    "list_providers",
    "register_provider",
]
