"""Errors raised by the compilation pipeline."""


class CompilerError(Exception):
    """Base class for all compiler errors."""
    pass


class InvalidImage(CompilerError):
    """Input image has zero or mismatched dimensions."""
    pass


class DetectorFailure(CompilerError):
    """Feature detection or clustering failed for a matching pyramid level."""
    pass


class ExtractorFailure(CompilerError):
    """Tracking-point extraction failed for a tracking pyramid level."""
    pass


class WorkerFailure(CompilerError):
    """Tracking worker process failed or exited without a result."""
    pass


class ArchiveError(CompilerError):
    """Bytes are not a well-formed compiled archive."""
    pass


class VersionMismatch(ArchiveError):
    """Archive was written by a different compiler version."""

    def __init__(self, found, expected: int):
        self.found = found
        self.expected = expected
        super().__init__(
            f"Archive version {found!r} does not match compiler version {expected}; "
            "please recompile"
        )


class NotCompiled(CompilerError):
    """Export requested before anything was compiled or imported."""
    pass
