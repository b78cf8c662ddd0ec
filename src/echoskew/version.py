__version__ = "0.1.0"


def short() -> str:
    return __version__
