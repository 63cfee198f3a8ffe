"""Resource descriptor set: declarative resources and their dependency edges."""

from stackweaver.descriptors.loader import load, parse
from stackweaver.descriptors.models import DescriptorSet, ResourceDescriptor, ResourceKind

__all__ = [
    "DescriptorSet",
    "ResourceDescriptor",
    "ResourceKind",
    "load",
    "parse",
]
