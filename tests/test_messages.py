# -*- coding: utf-8 -*-

import pytest

import rconlink
import rconlink.messages
from rconlink.messages import RCONMessage


class TestRCONMessage(object):

    def test_repr(self):
        message = RCONMessage(0, 0, b"foo")
        assert repr(message) == "<RCONMessage 0 RESPONSE_VALUE 3B>"

    def test_init_bytes(self):
        message = RCONMessage(0, 0, b"foo")
        assert message.id == 0
        assert isinstance(message.type, RCONMessage.Type)
        assert message.body == b"foo"
        assert isinstance(message.body, bytes)

    def test_init_unicode(self):
        message = RCONMessage(0, 0, "föo")
        assert message.body == b"f\xc3\xb6o"
        assert isinstance(message.body, bytes)

    def test_exec_and_auth_response_share_value(self):
        assert (RCONMessage.Type.EXECCOMMAND
                is RCONMessage.Type.AUTH_RESPONSE)
        assert RCONMessage(0, 2, b"").type is RCONMessage.Type.EXECCOMMAND

    def test_get_text(self):
        message = RCONMessage(0, 0, "foo".encode("utf-8"))
        assert message.text == "foo"
        assert isinstance(message.text, str)

    def test_get_text_bad(self):
        message = RCONMessage(0, 0, b"\xff")
        with pytest.raises(UnicodeDecodeError):
            getattr(message, "text")

    def test_set_text(self):
        message = RCONMessage(0, 0, b"")
        message.text = "ÿ"
        assert message.body == b"\xc3\xbf"

    def test_equality(self):
        assert RCONMessage(1, 0, b"a") == RCONMessage(1, 0, "a")
        assert RCONMessage(1, 0, b"a") != RCONMessage(2, 0, b"a")
        assert RCONMessage(1, 0, b"a") != RCONMessage(1, 3, b"a")

    def test_encode(self):
        message = RCONMessage(0, 2, b"foo")
        encoded = message.encode()
        assert encoded == (
            b"\x0D\x00\x00\x00"  # Size; 4 + 4 + 3 + 2 = 0xD
            b"\x00\x00\x00\x00"  # ID
            b"\x02\x00\x00\x00"  # Type
            b"foo"               # Body
            b"\x00\x00"          # Terminators
        )
        assert isinstance(encoded, bytes)

    def test_encode_known_vector(self):
        message = RCONMessage(
            0x12345678,
            RCONMessage.Type.RESPONSE_VALUE,
            "This is a test string.",
        )
        assert list(message.encode()) == (
            [32, 0, 0, 0, 120, 86, 52, 18, 0, 0, 0, 0]
            + list(b"This is a test string.")
            + [0, 0]
        )

    def test_encode_negative_id(self):
        encoded = RCONMessage(-1, 2, b"").encode()
        assert encoded[4:8] == b"\xFF\xFF\xFF\xFF"

    @pytest.mark.parametrize("length", [0, 1, 100, 1014])
    def test_encode_size_field(self, length):
        encoded = RCONMessage(1, 2, b"x" * length).encode()
        assert rconlink.messages.SIZE_FIELD.unpack(
            encoded[:4])[0] == length + 10
        assert len(encoded) == length + 14

    def test_encode_too_long(self):
        with pytest.raises(rconlink.RCONCommandTooLongError):
            RCONMessage(1, 2, b"x" * 1015).encode()

    def test_encode_too_long_multibyte(self):
        # 507 two-byte characters is 1014 bytes; one more is too many.
        RCONMessage(1, 2, "é" * 507).encode()
        with pytest.raises(rconlink.RCONCommandTooLongError):
            RCONMessage(1, 2, "é" * 507 + "x").encode()

    def test_decode(self):
        message = RCONMessage.decode(
            13,
            b"\x00\x00\x00\x00"  # ID
            b"\x02\x00\x00\x00"  # Type
            b"foo"               # Body
            b"\x00\x00"          # Terminators
        )
        assert message.id == 0
        assert message.type == 2
        assert isinstance(message.type, message.Type)
        assert message.body == b"foo"

    def test_decode_known_vector(self):
        buffer_ = (bytes([36, 0, 0, 0, 33, 67, 101, 119, 2, 0, 0, 0])
                   + b"This is a different string"
                   + b"\x00\x00")
        message = RCONMessage.decode(36, buffer_[4:])
        assert message.id == 0x77654321
        assert message.type is RCONMessage.Type.AUTH_RESPONSE
        assert message.text == "This is a different string"

    def test_decode_empty_body(self):
        message = RCONMessage.decode(
            10, b"\x05\x00\x00\x00\x00\x00\x00\x00\x00\x00")
        assert message.id == 5
        assert message.type is RCONMessage.Type.RESPONSE_VALUE
        assert message.body == b""

    def test_decode_bad_utf8(self):
        with pytest.raises(rconlink.RCONMessageError):
            RCONMessage.decode(
                11, b"\x01\x00\x00\x00\x00\x00\x00\x00\xFF\x00\x00")

    @pytest.mark.parametrize("size", [-1, 0, 9])
    def test_decode_too_small(self, size):
        with pytest.raises(rconlink.RCONMessageError):
            RCONMessage.decode(size, b"\x00" * 10)

    def test_decode_truncated(self):
        with pytest.raises(rconlink.RCONMessageError):
            RCONMessage.decode(20, b"\x00" * 10)

    def test_decode_unknown_type(self):
        with pytest.raises(rconlink.RCONUnexpectedMessageError) as exc:
            RCONMessage.decode(
                10, b"\x01\x00\x00\x00\x07\x00\x00\x00\x00\x00")
        assert isinstance(exc.value, rconlink.RCONUnknownMessageTypeError)
        assert exc.value.id == 1
        assert exc.value.type == 7

    @pytest.mark.parametrize(("id_", "type_", "body"), [
        (0, RCONMessage.Type.AUTH, b"password"),
        (-1, RCONMessage.Type.AUTH_RESPONSE, b""),
        (2 ** 31 - 1, RCONMessage.Type.RESPONSE_VALUE, b"x" * 1014),
        (-2 ** 31, RCONMessage.Type.EXECCOMMAND, "☃".encode("utf-8")),
    ])
    def test_round_trip(self, id_, type_, body):
        message = RCONMessage(id_, type_, body)
        decoded, remainder = RCONMessage.from_buffer(message.encode())
        assert decoded == message
        assert remainder == b""


class TestFromBuffer(object):

    def test(self):
        message, remainder = RCONMessage.from_buffer(
            b"\x0D\x00\x00\x00"          # Size
            b"\x00\x00\x00\x00"          # ID
            b"\x02\x00\x00\x00"          # Type
            b"foo"                       # Body
            b"\x00\x00"                  # Terminators
            b"\xAA\xBB\xCC\xDD\xEE\xFF"  # Remainder
        )
        assert message.id == 0
        assert message.type is RCONMessage.Type.AUTH_RESPONSE
        assert message.body == b"foo"
        assert remainder == b"\xAA\xBB\xCC\xDD\xEE\xFF"

    def test_known_vector(self):
        message, remainder = RCONMessage.from_buffer(
            bytes([36, 0, 0, 0, 33, 67, 101, 119, 2, 0, 0, 0])
            + b"This is a different string\x00\x00")
        assert message.id == 0x77654321
        assert message.type is RCONMessage.Type.AUTH_RESPONSE
        assert message.text == "This is a different string"
        assert remainder == b""

    @pytest.mark.parametrize("buffer_", [
        b"",
        b"\x00",
        b"\x00\x00",
        b"\x00\x00\x00",
    ])
    def test_too_short(self, buffer_):
        with pytest.raises(rconlink.RCONIncompleteMessageError):
            RCONMessage.from_buffer(buffer_)

    def test_incomplete(self):
        with pytest.raises(rconlink.RCONIncompleteMessageError):
            RCONMessage.from_buffer(b"\xFF\x00\x00\x00")

    def test_incomplete_is_message_error(self):
        assert issubclass(rconlink.RCONIncompleteMessageError,
                          rconlink.RCONMessageError)


class TestNextRequestID(object):

    @pytest.mark.parametrize(("current", "expected"), [
        (0, 1),
        (1, 2),
        (1000, 1001),
        (2 ** 31 - 2, 2 ** 31 - 1),
    ])
    def test_increment(self, current, expected):
        assert rconlink.messages.next_request_id(current) == expected

    def test_wrap(self):
        assert rconlink.messages.next_request_id(2 ** 31 - 1) == 1

    def test_negative(self):
        assert rconlink.messages.next_request_id(-1) == 1
