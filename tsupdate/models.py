from enum import Enum
from typing import Tuple


class TsUpdateError(Exception):
    """Base class for errors raised by the update downloader."""


class ConfigError(TsUpdateError):
    """Raised when the credentials file is missing or invalid."""


class ManifestFetchError(TsUpdateError):
    """Raised when the remote manifest cannot be fetched or read."""


class AccessLevel(Enum):
    """Access level gating which manifest lines apply to a run."""
    COM = "Com"
    DEV = "Dev"
    TEST = "Test"

    @property
    def text(self) -> str:
        return self.value

    @classmethod
    def from_text(cls, text: str) -> "AccessLevel":
        for level in cls:
            if level.value == text:
                return level
        raise ValueError(f"Unknown access level: {text!r}")


class Arch(Enum):
    """Target architecture token used in manifest paths."""
    X64 = "x64"
    X86 = "x86"

    @property
    def text(self) -> str:
        return self.value

    @classmethod
    def from_text(cls, text: str) -> "Arch":
        for arch in cls:
            if arch.value == text:
                return arch
        raise ValueError(f"Unknown architecture: {text!r}")


class Target:
    """The version/arch/access level a run is synchronizing."""
    __slots__ = ('version', 'arch', 'level')

    def __init__(self, version: str, arch: Arch = Arch.X64, level: AccessLevel = AccessLevel.COM):
        self.version = version
        self.arch = arch
        self.level = level

    def __repr__(self) -> str:
        return f"Target({self.version!r}, {self.arch.text}, {self.level.text})"


class UpdateItem:
    """One distributable file announced in a manifest.

    Two items are the same item when filename, size, product and digest
    all match; ``downloaded`` and ``verified`` are bookkeeping for the
    current run only.
    """
    def __init__(
        self,
        product: str,
        filename: str,
        size: int,
        digest: str = "",
        downloaded: bool = False,
        verified: bool = False
    ):
        self.product = product
        self.filename = filename
        self.size = size
        self.digest = (digest or "").upper()
        self.downloaded = downloaded
        self.verified = verified

    @property
    def has_digest(self) -> bool:
        return bool(self.digest)

    def key(self) -> Tuple[str, int, str, str]:
        return (self.filename, self.size, self.product, self.digest)

    def same_item(self, other: "UpdateItem") -> bool:
        return self.key() == other.key()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UpdateItem):
            return NotImplemented
        return self.same_item(other)

    def __hash__(self) -> int:
        return hash(self.key())

    def __repr__(self) -> str:
        return (
            f"UpdateItem(product={self.product!r}, filename={self.filename!r}, "
            f"size={self.size}, digest={self.digest!r}, "
            f"downloaded={self.downloaded}, verified={self.verified})"
        )


class DownloadStatus:
    """Model to track what happened to one item during a run."""
    def __init__(
        self,
        path: str,
        size: int = 0,
        downloaded: int = 0,
        checksum: str = "",
        status: str = "pending",
        error: str = ""
    ):
        self.path = path
        self.size = size
        self.downloaded = downloaded
        self.checksum = checksum or ""
        self.status = status
        self.error = error
