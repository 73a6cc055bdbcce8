"""Exceptions raised while reading or writing NAR archives.

Everything derives from NarError, so a caller can catch the whole surface
with one except clause. Errors carry the byte offset in the archive and the
entry path where they were detected, when those are known.

Decoding errors come in two families:
  StructuralError: the byte stream violates the grammar or its ordering
                   rules. The offset at which parsing could resume is
                   unknowable, so the whole decode is abandoned.
  ResourceError:   the stream is truncated or claims an absurd size.

ArchiveReadError covers the underlying stream itself failing.
"""


class NarError(Exception):
    def __init__(self, message: str, *, offset: int | None = None, path: bytes | None = None):
        self.message = message
        self.offset = offset
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        where = []
        if self.path is not None:
            where.append(f"path {self.path.decode(errors='backslashreplace') or '/'}")
        if self.offset is not None:
            where.append(f"offset {self.offset}")
        if not where:
            return self.message
        return f"{self.message} ({', '.join(where)})"


class DecodeError(NarError):
    pass


class StructuralError(DecodeError):
    pass


class BadMagic(StructuralError):
    pass


class MalformedGrammar(StructuralError):
    pass


class UnsortedEntries(StructuralError):
    """Directory entries out of order, or the same name given twice."""


class InvalidEntryName(StructuralError):
    """Empty name, '.', '..', or a name containing NUL or '/'."""


class CorruptPadding(StructuralError):
    pass


class ResourceError(DecodeError):
    pass


class FieldTooLarge(ResourceError):
    pass


class UnexpectedEof(ResourceError):
    pass


class ArchiveReadError(DecodeError):
    """The stream holding the archive failed with an OSError."""


class EncodeError(NarError):
    pass


class SourceReadError(EncodeError):
    """A source-tree object could not be read."""


class SinkWriteError(EncodeError):
    pass


class UnsupportedFileType(EncodeError):
    """Sockets, fifos and device nodes have no NAR representation."""


class DestinationWriteError(NarError):
    pass
