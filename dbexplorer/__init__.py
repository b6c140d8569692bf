"""dbexplorer - browse database schemas, run ad-hoc SQL and edit table rows."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("dbexplorer")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
