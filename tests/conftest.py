"""Shared fixtures for tarmover tests."""

import pytest

from fakes import FakeS3Client


@pytest.fixture
def fake_s3():
    """An empty in-memory S3 client."""
    return FakeS3Client()


@pytest.fixture
def sample_files(tmp_path, monkeypatch):
    """Two files in the working directory: a.txt (5 bytes), b.txt (3000 bytes).

    The working directory is changed to tmp_path so the files can be passed
    by relative name and keep short archive names.
    """
    monkeypatch.chdir(tmp_path)
    (tmp_path / "a.txt").write_bytes(b"hello")
    (tmp_path / "b.txt").write_bytes(bytes(i % 251 for i in range(3000)))
    return ["a.txt", "b.txt"]
