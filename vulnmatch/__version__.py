from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

try:
    __version__ = version('vulnmatch')
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = '0.0.0-dev'
