from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
from fakes import PipePair, make_pipe


@pytest.fixture
def out_pipe() -> Iterator[PipePair]:
    pipe = make_pipe()
    yield pipe
    os.close(pipe.read_fd)
    os.close(pipe.write_fd)


@pytest.fixture
def err_pipe() -> Iterator[PipePair]:
    pipe = make_pipe()
    yield pipe
    os.close(pipe.read_fd)
    os.close(pipe.write_fd)
