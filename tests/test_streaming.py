from __future__ import annotations

from order_checklist.checklist.streaming import (
    StreamDecoder,
    decode_stream,
    encode_fragment,
    encode_stream,
)


def test_fragment_framing() -> None:
    assert encode_fragment("Hello") == '0:"Hello"\n'
    # Newlines inside a fragment stay inside one framed line.
    assert encode_fragment("a\nb") == '0:"a\\nb"\n'


def test_encode_stream_skips_empty_fragments() -> None:
    assert list(encode_stream(["Hi", "", " there"])) == ['0:"Hi"\n', '0:" there"\n']


def test_decoder_buffers_partial_lines() -> None:
    decoder = StreamDecoder()

    assert decoder.feed('0:"Hel') == []
    assert decoder.feed('lo"\n0:" wor') == ["Hello"]
    assert decoder.feed('ld"\n') == [" world"]
    assert decoder.close() == []


def test_decoder_ignores_unknown_lines_and_flushes_tail() -> None:
    chunks = ['8:{"meta":1}\n', '0:"x"\n', "\n", '0:"tail"']

    assert list(decode_stream(chunks)) == ["x", "tail"]


def test_decoder_takes_plain_text_bodies_verbatim() -> None:
    assert list(decode_stream(["0:plain words\r\n0:123\n"])) == ["plain words", "123"]


def test_encoded_text_survives_arbitrary_chunking() -> None:
    wire = "".join(encode_stream(["Line one\n", "line \"two\"", " ünïcode"]))
    chunks = [wire[i:i + 3] for i in range(0, len(wire), 3)]

    assert "".join(decode_stream(chunks)) == 'Line one\nline "two" ünïcode'
