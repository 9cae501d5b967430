class VimibError(Exception):
    """Base class for every error raised by the vimib pipeline."""
    pass


class SourceError(VimibError):
    def __init__(self, message: str, line: int, col: int):
        super().__init__(message)
        self.line = line
        self.col = col
