import io
import os

import pytest

from tusstore.partproducer import PartProducer, clean_up_temp_file


class InfiniteZeroReader:
    def read(self, size=-1):
        return b"\x00"


class ErrorReader:
    def read(self, size=-1):
        raise OSError("error from ErrorReader")


def test_consumes_entire_reader_without_error(tmp_path):
    producer = PartProducer(io.BytesIO(b"test"), str(tmp_path))
    actual = b""
    for file in producer.produce(1):
        data = file.read()
        assert len(data) == 1
        actual += data
        clean_up_temp_file(file)
    assert actual == b"test"
    assert list(tmp_path.iterdir()) == []


def test_parts_have_requested_size(tmp_path):
    producer = PartProducer(io.BytesIO(b"1234567890ABCD"), str(tmp_path))
    parts = []
    for file in producer.produce(4):
        parts.append(file.read())
        clean_up_temp_file(file)
    assert parts == [b"1234", b"5678", b"90AB", b"CD"]


def test_files_use_prefix_and_directory(tmp_path):
    producer = PartProducer(io.BytesIO(b"abc"), str(tmp_path))
    file = next(producer.produce(10))
    try:
        assert os.path.dirname(file.name) == str(tmp_path)
        assert os.path.basename(file.name).startswith("tusd-s3-tmp-")
        assert file.read() == b"abc"
    finally:
        clean_up_temp_file(file)
    assert not os.path.exists(file.name)


def test_exits_when_closed(tmp_path):
    producer = PartProducer(InfiniteZeroReader(), str(tmp_path))
    parts = producer.produce(10)
    received = []
    for file in parts:
        received.append(file.read())
        clean_up_temp_file(file)
        if len(received) == 3:
            break
    parts.close()
    assert received == [b"\x00" * 10] * 3
    assert next(parts, None) is None
    assert list(tmp_path.iterdir()) == []


def test_exits_when_closed_before_any_part(tmp_path):
    producer = PartProducer(InfiniteZeroReader(), str(tmp_path))
    parts = producer.produce(10)
    parts.close()
    assert next(parts, None) is None
    assert list(tmp_path.iterdir()) == []


def test_exits_when_unable_to_read(tmp_path):
    producer = PartProducer(ErrorReader(), str(tmp_path))
    with pytest.raises(OSError, match="error from ErrorReader"):
        list(producer.produce(10))
    assert list(tmp_path.iterdir()) == []


def test_empty_reader_yields_nothing(tmp_path):
    producer = PartProducer(io.BytesIO(b""), str(tmp_path))
    assert list(producer.produce(5)) == []
    assert list(tmp_path.iterdir()) == []


def test_clean_up_temp_file_tolerates_missing_file(tmp_path):
    path = tmp_path / "gone"
    file = open(path, "w+b")
    os.remove(path)
    clean_up_temp_file(file)
    assert file.closed