"""What a NAR keeps, and what gets substituted when it is unpacked.

Packing throws away every attribute except the object kind and, for regular
files, whether any execute bit is set. Two trees that differ only in the
discarded attributes therefore serialize to identical bytes.

The wire format fixes what is stripped, not what replaces it on unpack, so
the substituted values are fields of NormalizationPolicy. The defaults follow
what Nix does to store paths: read-only modes, mtime at the epoch, no xattrs.

See: nix/src/libstore/posix-fs-canonicalise.cc — canonicaliseTimestampAndPermissions()
"""

from dataclasses import dataclass

from pynar.node import Kind

# attribute -> (on pack, on unpack)
ATTRIBUTE_RULES: dict[str, tuple[str, str]] = {
    "mtime": ("discarded", "set to epoch"),
    "atime": ("discarded", "set to epoch"),
    "uid": ("discarded", "process default"),
    "gid": ("discarded", "process default"),
    "mode": ("discarded", "fixed default"),
    "executable": ("preserved", "restored"),
    "setuid": ("discarded", "never set"),
    "setgid": ("discarded", "never set"),
    "sticky": ("discarded", "never set"),
    "xattrs": ("discarded", "removed"),
}

EXECUTE_BITS = 0o111


@dataclass(frozen=True)
class Attributes:
    """Metadata of one filesystem object. None means "not set / leave alone"."""

    mode: int | None = None
    uid: int | None = None
    gid: int | None = None
    atime: float | None = None
    mtime: float | None = None
    xattrs: tuple[tuple[str, bytes], ...] | None = None


@dataclass(frozen=True)
class NormalizationPolicy:
    file_mode: int = 0o444
    executable_mode: int = 0o555
    directory_mode: int = 0o555
    epoch: float = 0
    canonicalize_mtime: bool = True
    remove_xattrs: bool = True

    def __post_init__(self):
        for name in ("file_mode", "executable_mode", "directory_mode"):
            mode = getattr(self, name)
            if mode & ~0o777:
                raise ValueError(f"{name} {mode:#o} has bits outside 0o777")

    def pack_executable(self, kind: Kind, attributes: Attributes | bool) -> bool:
        """The only attribute that reaches the archive.

        Directories and symlinks never carry it, whatever their mode says.
        """
        if kind is not Kind.REGULAR:
            return False
        if isinstance(attributes, bool):
            return attributes
        return bool((attributes.mode or 0) & EXECUTE_BITS)

    def unpack_attributes(self, kind: Kind, executable: bool = False) -> Attributes:
        """Attributes to apply to an object restored from an archive."""
        if kind is Kind.DIRECTORY:
            mode = self.directory_mode
        elif kind is Kind.REGULAR:
            mode = self.executable_mode if executable else self.file_mode
        else:
            # Symlink modes are not meaningful on Linux and cannot be changed.
            mode = None
        xattrs = () if self.remove_xattrs else None
        if self.canonicalize_mtime:
            return Attributes(mode=mode, atime=self.epoch, mtime=self.epoch, xattrs=xattrs)
        return Attributes(mode=mode, xattrs=xattrs)


DEFAULT_POLICY = NormalizationPolicy()
