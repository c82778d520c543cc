"""
MediaConnect client package.

Finds media servers on the local network and through the cloud directory,
keeps their credentials on disk, and negotiates which server to connect to
and over which address (local, remote or manual).
"""

from mediaconnect.version import get_version

__version__ = get_version()
