"""
Manifest handling for Global Pack Sync.

This package contains the snapshot collector, which lists globally installed
packages for a manager, the batch installer, which replays a package set in
concurrency-bounded windows, and the retry script writer for failed installs.
"""
