"""
Global Pack Sync - snapshot globally installed Node packages as named profiles.

Save what your global toolchain looks like, reinstall it anywhere.
"""

from importlib.metadata import version as _version

__version__ = _version("global-pack-sync")
