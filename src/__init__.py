from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("player-count-bots")
except PackageNotFoundError:
    # Package not installed, fallback for development
    __version__ = "dev"
