"""Host SDK loading and normalization.

- `loader.SdkLoader` finds a usable SDK global (ambient first, then script
  candidates behind a content-type preflight).
- `normalizer.normalize_sdk` wraps the raw global in the adapter for its
  generation so the Core sees one `HostSdk` interface.
"""

from adapters.host_sdk.loader import SdkLoader, is_script_content_type
from adapters.host_sdk.normalizer import (
    LegacyVssAdapter,
    ModernSdkAdapter,
    has_core_capabilities,
    normalize_sdk,
)

__all__ = [
    "LegacyVssAdapter",
    "ModernSdkAdapter",
    "SdkLoader",
    "has_core_capabilities",
    "is_script_content_type",
    "normalize_sdk",
]
