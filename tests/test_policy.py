"""Tests for the pack/unpack normalization rules."""

import dataclasses

import pytest

from pynar.node import Kind
from pynar.policy import ATTRIBUTE_RULES, DEFAULT_POLICY, Attributes, NormalizationPolicy


@pytest.mark.parametrize("mode,expected", [
    (0o644, False),
    (0o755, True),
    (0o744, True),
    (0o654, True),
    (0o645, True),
    (0o4644, False),  # setuid alone is not "executable"
    (0o1600, False),
])
def test_pack_executable_from_mode(mode, expected):
    assert DEFAULT_POLICY.pack_executable(Kind.REGULAR, Attributes(mode=mode)) is expected


def test_pack_ignores_everything_but_execute_bits():
    a = Attributes(mode=0o700, uid=0, gid=0, atime=1.0, mtime=2.0, xattrs=(("user.x", b"1"),))
    b = Attributes(mode=0o4511, uid=1000, gid=100, atime=9e9, mtime=9e9)
    assert DEFAULT_POLICY.pack_executable(Kind.REGULAR, a) == DEFAULT_POLICY.pack_executable(Kind.REGULAR, b)


@pytest.mark.parametrize("kind", [Kind.DIRECTORY, Kind.SYMLINK])
def test_only_files_are_executable(kind):
    assert not DEFAULT_POLICY.pack_executable(kind, Attributes(mode=0o777))
    assert not DEFAULT_POLICY.pack_executable(kind, True)


def test_unpack_defaults():
    assert DEFAULT_POLICY.unpack_attributes(Kind.REGULAR, False).mode == 0o444
    assert DEFAULT_POLICY.unpack_attributes(Kind.REGULAR, True).mode == 0o555
    assert DEFAULT_POLICY.unpack_attributes(Kind.DIRECTORY).mode == 0o555
    assert DEFAULT_POLICY.unpack_attributes(Kind.SYMLINK).mode is None


def test_unpack_sets_epoch_and_clears_xattrs():
    attrs = DEFAULT_POLICY.unpack_attributes(Kind.REGULAR)
    assert attrs.mtime == 0
    assert attrs.atime == 0
    assert attrs.xattrs == ()
    # ownership is left to the process
    assert attrs.uid is None and attrs.gid is None


def test_unpack_never_sets_special_bits():
    for kind in Kind:
        for executable in (False, True):
            mode = DEFAULT_POLICY.unpack_attributes(kind, executable).mode or 0
            assert not mode & 0o7000


def test_configurable():
    policy = NormalizationPolicy(file_mode=0o644, executable_mode=0o755, epoch=1, canonicalize_mtime=True)
    attrs = policy.unpack_attributes(Kind.REGULAR, True)
    assert attrs.mode == 0o755
    assert attrs.mtime == 1


def test_keep_times_and_xattrs():
    policy = NormalizationPolicy(canonicalize_mtime=False, remove_xattrs=False)
    attrs = policy.unpack_attributes(Kind.DIRECTORY)
    assert attrs.mtime is None
    assert attrs.xattrs is None


def test_rejects_special_bits_in_defaults():
    with pytest.raises(ValueError):
        NormalizationPolicy(executable_mode=0o4755)


def test_policy_is_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        DEFAULT_POLICY.file_mode = 0o666


def test_rule_table():
    preserved = [name for name, (pack, _) in ATTRIBUTE_RULES.items() if pack == "preserved"]
    assert preserved == ["executable"]
