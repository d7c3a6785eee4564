# Copyright © Burnt Labs
# SPDX-License-Identifier: Apache-2.0

"""
Protocol Buffers wire-format serialization for Cosmos transactions.

Cosmos SDK transactions, sign docs and messages are protobuf messages. Only a
small, fixed set of message types is needed to sign for an abstract account,
so rather than depending on generated code this module provides a minimal
serializer and deserializer for the wire format, in the same style as a
hand-written BCS codec: message types implement ``serialize(serializer)``
and write their fields in field-number order.

Learn more at https://protobuf.dev/programming-guides/encoding/

Encoding rules implemented (proto3):
- Scalars (varint integers, bools, strings, bytes) equal to their default
  value are omitted
- Embedded messages are always written when present, even if empty
- Repeated fields write one tag per element, including empty elements

Examples:
    Serializing a message::

        from xion_sdk.protobuf import Serializer, encoder

        class Coin:
            def serialize(self, serializer: Serializer):
                serializer.str(1, self.denom)
                serializer.str(2, self.amount)

        data = encoder(Coin(...))

    Reading fields back::

        der = Deserializer(data)
        fields = der.fields()   # [(1, b"uxion"), (2, b"100")]
"""

from __future__ import annotations

import io
import typing
import unittest
from typing import Any, Callable, Dict, List, Sequence, Tuple, Union

from typing_extensions import Protocol

MAX_U64 = 2**64 - 1

WIRE_VARINT = 0
WIRE_I64 = 1
WIRE_LEN = 2
WIRE_I32 = 5


class Serializable(Protocol):
    """Protocol for message types that can be written to a :class:`Serializer`."""

    def serialize(self, serializer: Serializer):
        ...


class Deserializer:
    """Reads protobuf wire-format fields from a byte string.

    Attributes:
        _input: Internal BytesIO stream for reading data.
        _length: Total length of the input data.
    """

    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        return self._length - self._input.tell()

    def tag(self) -> Tuple[int, int]:
        """Read a field key and split it into ``(field_number, wire_type)``."""
        key = self.varint()
        return key >> 3, key & 0x07

    def varint(self) -> int:
        """Read a base-128 varint.

        Raises:
            Exception: If the value exceeds 64 bits or the input ends early.
        """
        value = 0
        shift = 0

        while True:
            byte = self._read_int(1)
            value |= (byte & 0x7F) << shift
            if byte & 0x80 == 0:
                break
            shift += 7
            if shift >= 70:
                raise Exception("Unexpectedly large varint value")

        if value > MAX_U64:
            raise Exception("Unexpectedly large varint value")
        return value

    def to_bytes(self) -> bytes:
        return self._read(self.varint())

    def str(self) -> str:
        return self.to_bytes().decode("utf-8")

    def skip(self, wire_type: int):
        if wire_type == WIRE_VARINT:
            self.varint()
        elif wire_type == WIRE_I64:
            self._read(8)
        elif wire_type == WIRE_LEN:
            self.to_bytes()
        elif wire_type == WIRE_I32:
            self._read(4)
        else:
            raise Exception(f"Unsupported wire type: {wire_type}")

    def fields(self) -> List[Tuple[int, Union[int, bytes]]]:
        """Read every remaining field in order.

        Varint fields yield an ``int``, length-delimited fields yield ``bytes``;
        fixed-width fields yield their raw little-endian bytes.
        """
        values: List[Tuple[int, Union[int, bytes]]] = []
        while self.remaining() > 0:
            field, wire_type = self.tag()
            if wire_type == WIRE_VARINT:
                values.append((field, self.varint()))
            elif wire_type == WIRE_LEN:
                values.append((field, self.to_bytes()))
            elif wire_type == WIRE_I64:
                values.append((field, self._read(8)))
            elif wire_type == WIRE_I32:
                values.append((field, self._read(4)))
            else:
                raise Exception(f"Unsupported wire type: {wire_type}")
        return values

    def field_map(self) -> Dict[int, List[Union[int, bytes]]]:
        """Like :meth:`fields` but grouped by field number."""
        grouped: Dict[int, List[Union[int, bytes]]] = {}
        for field, value in self.fields():
            grouped.setdefault(field, []).append(value)
        return grouped

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            error = (
                f"Unexpected end of input. Requested: {length}, found: {actual_length}"
            )
            raise Exception(error)
        return value

    def _read_int(self, length: int) -> int:
        return int.from_bytes(self._read(length), byteorder="little", signed=False)


class Serializer:
    """Writes protobuf wire-format fields to an in-memory buffer.

    Attributes:
        _output: Internal BytesIO buffer for accumulating serialized data.
    """

    _output: io.BytesIO

    def __init__(self):
        self._output = io.BytesIO()

    def output(self) -> bytes:
        return self._output.getvalue()

    def tag(self, field: int, wire_type: int):
        self.varint((field << 3) | wire_type)

    def varint(self, value: int):
        """Write a raw base-128 varint.

        Raises:
            Exception: If the value is negative or exceeds 64 bits.
        """
        if value < 0 or value > MAX_U64:
            raise Exception(f"Cannot encode {value} into varint")

        while value >= 0x80:
            # Write 7 (lowest) bits of data and set the 8th bit to 1.
            self._output.write(bytes([(value & 0x7F) | 0x80]))
            value >>= 7

        # Write the remaining bits of data and set the highest bit to 0.
        self._output.write(bytes([value & 0x7F]))

    def uint64(self, field: int, value: int):
        if value:
            self.tag(field, WIRE_VARINT)
            self.varint(value)

    def bool(self, field: int, value: bool):
        self.uint64(field, int(value))

    def enum(self, field: int, value: int):
        self.uint64(field, int(value))

    def to_bytes(self, field: int, value: bytes):
        if value:
            self._length_delimited(field, value)

    def str(self, field: int, value: str):
        if value:
            self._length_delimited(field, value.encode("utf-8"))

    def struct(self, field: int, value: Serializable):
        """Write an embedded message. It is written even if it encodes to nothing."""
        self._length_delimited(field, encoder(value))

    def repeated_bytes(self, field: int, values: Sequence[bytes]):
        for value in values:
            self._length_delimited(field, value)

    def repeated_str(self, field: int, values: Sequence[str]):
        for value in values:
            self._length_delimited(field, value.encode("utf-8"))

    def repeated_struct(self, field: int, values: Sequence[Serializable]):
        for value in values:
            self.struct(field, value)

    def _length_delimited(self, field: int, value: bytes):
        self.tag(field, WIRE_LEN)
        self.varint(len(value))
        self._output.write(value)


def encoder(value: Serializable) -> bytes:
    """Serialize a single message to bytes."""
    ser = Serializer()
    value.serialize(ser)
    return ser.output()


def encode_with(
    value: typing.Any, writer: Callable[[Serializer, typing.Any], Any]
) -> bytes:
    """Serialize ``value`` with an explicit writer function."""
    ser = Serializer()
    writer(ser, value)
    return ser.output()


class Test(unittest.TestCase):
    def test_varint(self):
        for in_value, encoded in [
            (0, b"\x00"),
            (1, b"\x01"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (300, b"\xac\x02"),
            (MAX_U64, b"\xff" * 9 + b"\x01"),
        ]:
            ser = Serializer()
            ser.varint(in_value)
            self.assertEqual(ser.output(), encoded)
            self.assertEqual(Deserializer(encoded).varint(), in_value)

    def test_varint_bounds(self):
        with self.assertRaises(Exception):
            Serializer().varint(-1)
        with self.assertRaises(Exception):
            Serializer().varint(MAX_U64 + 1)

    def test_default_values_are_omitted(self):
        ser = Serializer()
        ser.uint64(1, 0)
        ser.str(2, "")
        ser.to_bytes(3, b"")
        ser.bool(4, False)
        self.assertEqual(ser.output(), b"")

    def test_scalar_fields(self):
        ser = Serializer()
        ser.uint64(1, 150)
        ser.str(2, "testing")
        ser.bool(3, True)
        self.assertEqual(ser.output(), bytes.fromhex("089601120774657374696e671801"))
        self.assertEqual(
            Deserializer(ser.output()).fields(),
            [(1, 150), (2, b"testing"), (3, 1)],
        )

    def test_repeated_fields_keep_empty_elements(self):
        ser = Serializer()
        ser.repeated_bytes(3, [b"", b"\x01"])
        self.assertEqual(ser.output(), b"\x1a\x00\x1a\x01\x01")
        self.assertEqual(
            Deserializer(ser.output()).field_map(), {3: [b"", b"\x01"]}
        )

    def test_embedded_message(self):
        class Empty:
            def serialize(self, serializer: Serializer):
                pass

        class Outer:
            def serialize(self, serializer: Serializer):
                serializer.struct(1, Empty())
                serializer.str(2, "a")

        self.assertEqual(encoder(Outer()), b"\x0a\x00\x12\x01a")

    def test_skip_and_truncation(self):
        der = Deserializer(b"\x08\x96\x01\x12\x01a")
        field, wire_type = der.tag()
        der.skip(wire_type)
        self.assertEqual(der.tag(), (2, WIRE_LEN))
        self.assertEqual(der.str(), "a")
        with self.assertRaisesRegex(Exception, "Unexpected end of input"):
            Deserializer(b"\x12\x05ab").fields()
