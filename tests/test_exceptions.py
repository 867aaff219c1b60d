"""Tests for storage exception classes."""

import pytest

from glassusb.storage.exceptions import (
    BootloaderError,
    ConfigurationError,
    ContentError,
    ContentMismatchError,
    FormatError,
    GeometryError,
    InsufficientSpaceError,
    LoopDeviceError,
    MountError,
    MountFailedError,
    NotABlockDeviceError,
    NotARecognizedImageError,
    PartitionWriteError,
    PayloadNotFoundError,
    PhaseError,
    PreconditionError,
    ReadError,
    SizeMismatchError,
    StorageError,
    ToolNotFoundError,
    UnexpectedExtraDataError,
    UnmountFailedError,
    UnsupportedFilesystemError,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    @pytest.mark.parametrize(
        "error, parent",
        [
            (UnsupportedFilesystemError("ext4"), ConfigurationError),
            (ToolNotFoundError("ms-sys"), ConfigurationError),
            (PayloadNotFoundError(["/a"]), ConfigurationError),
            (NotABlockDeviceError("/tmp/x"), PreconditionError),
            (InsufficientSpaceError(10, "/dev/sdb", 5), PreconditionError),
            (NotARecognizedImageError("a.iso"), PreconditionError),
            (GeometryError("too small"), PreconditionError),
            (MountFailedError("/dev/sdb1", "/mnt"), MountError),
            (UnmountFailedError("/mnt"), MountError),
            (LoopDeviceError("no loop"), MountError),
            (ContentMismatchError("/mnt/a"), ContentError),
            (UnexpectedExtraDataError("/mnt/a"), SizeMismatchError),
            (SizeMismatchError("/mnt/a"), ContentError),
        ],
    )
    def test_parent(self, error, parent):
        assert isinstance(error, parent)
        assert isinstance(error, StorageError)

    def test_configuration_and_precondition_are_distinct(self):
        assert not issubclass(ConfigurationError, PreconditionError)
        assert not issubclass(PreconditionError, ConfigurationError)


class TestMessages:
    def test_tool_output_is_appended(self):
        error = FormatError("/dev/sdb1", "NTFS", "  Device busy\n")

        assert str(error) == "Failed to create NTFS filesystem on /dev/sdb1\noutput: Device busy"

    def test_empty_output_is_omitted(self):
        assert str(PartitionWriteError("/dev/sdb", "")) == (
            "Failed to create partition table on /dev/sdb"
        )

    def test_bootloader_error(self):
        error = BootloaderError("/dev/sdb", "bad")

        assert error.target == "/dev/sdb"
        assert str(error).startswith("Failed to write MBR bootloader to /dev/sdb")

    def test_unsupported_filesystem_lists_choices(self):
        error = UnsupportedFilesystemError("ext4", ("exfat", "ntfs", "fat32"))

        assert str(error) == "Unsupported filesystem: ext4 (choose one of: exfat, ntfs, fat32)"

    def test_not_recognized_image(self):
        error = NotARecognizedImageError("a.iso", "no UDF filesystem found")

        assert "not recognised as a valid Windows ISO image in UDF format" in str(error)
        assert str(error).endswith(": no UDF filesystem found")

    def test_insufficient_space_fields(self):
        error = InsufficientSpaceError(5_000_000_000, "/dev/sdb", 4_000_000_000)

        assert error.image_size == 5_000_000_000
        assert error.destination_size == 4_000_000_000
        assert "/dev/sdb" in str(error)

    def test_content_errors_carry_path(self):
        assert ReadError("/mnt/a", "EIO", from_image=True).path == "/mnt/a"
        assert "from image" in str(ReadError("/mnt/a", "EIO", from_image=True))
        assert "from destination" in str(ReadError("/mnt/a", "EIO"))

    def test_size_mismatch_messages(self):
        assert "larger than expected" in str(SizeMismatchError("/mnt/a"))
        assert "unexpected extra data" in str(UnexpectedExtraDataError("/mnt/a"))

    def test_content_mismatch_offset(self):
        assert "chunk at byte 4194304" in str(ContentMismatchError("/mnt/a", 4194304))
        assert "chunk" not in str(ContentMismatchError("/mnt/a"))


class TestPhaseError:
    def test_wraps_cause(self):
        cause = FormatError("/dev/sdb1", "exFAT")

        error = PhaseError("format", 4, 7, cause)

        assert error.cause is cause
        assert error.number == 4
        assert error.total == 7
        assert str(error) == (
            "Phase 4/7 (format) failed: Failed to create exFAT filesystem on /dev/sdb1"
        )
