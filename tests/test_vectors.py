import struct

import pytest

from atlas_ingestion.utils.vectors import decode_vector, encode_vector


def test_encoding_is_little_endian_float32():
    blob = encode_vector([1.0, -2.5, 0.0])

    assert blob == struct.pack("<3f", 1.0, -2.5, 0.0)
    assert len(blob) == 12


def test_decode_restores_values():
    vector = [0.125, -3.0, 42.0, 1e-3]
    decoded = decode_vector(encode_vector(vector), dimension=4)

    assert decoded == pytest.approx(vector)
    assert all(isinstance(v, float) for v in decoded)


def test_decode_rejects_partial_component():
    with pytest.raises(ValueError):
        decode_vector(b"\x00\x00\x80\x3f\x00")


def test_decode_rejects_wrong_dimension():
    with pytest.raises(ValueError):
        decode_vector(encode_vector([1.0, 2.0]), dimension=3)


def test_encode_rejects_nested_input():
    with pytest.raises(ValueError):
        encode_vector([[1.0, 2.0], [3.0, 4.0]])
