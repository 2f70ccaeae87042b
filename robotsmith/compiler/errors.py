class StructuralError(ValueError):
    """Raised when a robot description has no usable kinematic tree."""

    def __init__(self, message: str, warnings: list[str] | None = None):
        self.warnings = list(warnings or [])
        if self.warnings:
            message = message + "\n" + "\n".join(self.warnings)
        super().__init__(message)


class AssetError(FileNotFoundError):
    """Raised when referenced mesh files are missing and meshes were required."""

    def __init__(self, message: str, missing: list[str] | None = None):
        self.missing = list(missing or [])
        super().__init__(message)


class InertiaError(ValueError):
    """Raised when authored inertia is not physically valid."""
