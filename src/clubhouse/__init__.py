"""clubhouse: supervise coding-agent CLIs and their on-disk hook wiring."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("clubhouse-agents")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
