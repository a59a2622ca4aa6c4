import os


def safe_open_binary(path: str):
    """Open an artifact for streaming, refusing anything that is not a regular file"""
    if not os.path.isfile(path):
        raise FileNotFoundError(path)
    return open(path, "rb")
