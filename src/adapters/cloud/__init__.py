"""Cloud adapters."""

from adapters.cloud.base import CloudAdapter
from adapters.cloud.http import HttpCloudAdapter

__all__ = ["CloudAdapter", "HttpCloudAdapter"]
