"""Tests for the response reader over a plain pipe."""

import os
from collections.abc import Iterator

import pytest

from imps.channels import ResponseReader
from imps.errors import InstanceTornDownError

pytestmark = pytest.mark.skipif(os.name != "posix", reason="select on pipes needs POSIX")


@pytest.fixture
def pipe() -> Iterator[tuple[int, int]]:
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass


class TestResponseReader:
    def test_reads_one_line_at_a_time(self, pipe: tuple[int, int]) -> None:
        read_fd, write_fd = pipe
        os.write(write_fd, b"one\r\ntwo\n")
        reader = ResponseReader(os.dup(read_fd))

        assert reader.readline(1.0) == "one"
        assert reader.readline(1.0) == "two"
        assert reader.readline(0.05) is None
        reader.close()

    def test_partial_line_survives_reader(self, pipe: tuple[int, int]) -> None:
        """A line cut by a timeout is finished by the next reader."""
        read_fd, write_fd = pipe
        pending = bytearray()
        os.write(write_fd, b"abc")

        with ResponseReader(os.dup(read_fd), pending) as first:
            assert first.readline(0.05) is None
        assert pending == b"abc"

        os.write(write_fd, b"def\n")
        with ResponseReader(os.dup(read_fd), pending) as second:
            assert second.readline(1.0) == "abcdef"
        assert pending == b""

    def test_end_of_file_is_teardown(self, pipe: tuple[int, int]) -> None:
        read_fd, write_fd = pipe
        os.close(write_fd)

        with ResponseReader(os.dup(read_fd)) as reader:
            with pytest.raises(InstanceTornDownError):
                reader.readline(1.0)
