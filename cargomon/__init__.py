__version__ = "0.1.0"

get_version = lambda: __version__
