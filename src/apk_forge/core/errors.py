"""Error taxonomy for the build service.

Only ``CapacityExceeded`` is ever raised to a caller of the scheduler. Every
other error happens inside an admitted job and ends up as that job's
``error`` text when it transitions to ``failed``.
"""


class ApkForgeError(Exception):
    """Base class for all service errors."""


class CapacityExceeded(ApkForgeError):
    """Raised by enqueue when every build slot is taken."""

    def __init__(self, limit: int):
        super().__init__(f"Too many concurrent builds ({limit}). Try again later.")
        self.limit = limit


class TemplateError(ApkForgeError):
    """The template tree is missing or lacks a required file."""


# Icon fetch

class IconFetchError(ApkForgeError):
    """Base class for icon download failures."""


class InvalidScheme(IconFetchError):
    pass


class SSRFRejected(IconFetchError):
    pass


class InvalidContentType(IconFetchError):
    pass


class PayloadTooLarge(IconFetchError):
    pass


class DownloadError(IconFetchError):
    pass


class InvalidImage(IconFetchError):
    """The downloaded bytes could not be decoded as an image."""


# Toolchain

class BuildError(ApkForgeError):
    """Base class for toolchain subprocess failures."""


class BuildPrepError(BuildError):
    pass


class BuildProcessError(BuildError):
    def __init__(self, message: str, returncode: int, output_tail: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output_tail = output_tail


class BuildTimeout(BuildError):
    pass


class ArtifactNotFound(ApkForgeError):
    pass


class UploadError(ApkForgeError):
    pass
