"""pynar — the Nix Archive (NAR) format in Python."""

from pynar.decoder import Archive, ContentReader, Entry, decode, open_archive
from pynar.encoder import SourceTree, encode, read_tree, to_bytes
from pynar.errors import (
    ArchiveReadError,
    BadMagic,
    CorruptPadding,
    DecodeError,
    DestinationWriteError,
    EncodeError,
    FieldTooLarge,
    InvalidEntryName,
    MalformedGrammar,
    NarError,
    SinkWriteError,
    SourceReadError,
    UnexpectedEof,
    UnsortedEntries,
    UnsupportedFileType,
)
from pynar.node import Directory, File, Kind, Node, Symlink
from pynar.policy import DEFAULT_POLICY, Attributes, NormalizationPolicy
from pynar.restore import DestinationTree, unpack
