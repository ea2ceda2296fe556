"""
Version constants for onyx.
Single source of truth for all version strings.
"""

# Current client version. pyproject.toml and onyx/__init__.py read from here.
ONYX_VERSION = "0.1.0"

# Service name used for the keyring entries and the submission client agent
SERVICE_NAME = "onyx"
