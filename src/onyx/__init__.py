"""onyx: scrobble plays to teal.fm over the AT Protocol."""

from onyx.version import ONYX_VERSION

__version__ = ONYX_VERSION

__all__ = ["__version__"]
