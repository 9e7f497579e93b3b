from bloxr.client.sse import FrameDecoder
from bloxr.domain.events import DeliveryOutcome, Done, ExtractionStarted, StreamError, TextDelta, encode_frame


def _stream():
    events = [TextDelta("Héllo "), TextDelta("wörld"), ExtractionStarted(), DeliveryOutcome(pushed=True), Done()]
    return events, "".join(encode_frame(e) for e in events).encode("utf-8")


def test_whole_body_decodes_in_order():
    events, body = _stream()
    assert FrameDecoder().feed(body) == events


def test_any_split_point_yields_same_events():
    events, body = _stream()
    for cut in range(1, len(body)):
        decoder = FrameDecoder()
        got = decoder.feed(body[:cut]) + decoder.feed(body[cut:]) + decoder.close()
        assert got == events, cut


def test_byte_at_a_time():
    events, body = _stream()
    decoder = FrameDecoder()
    got = []
    for i in range(len(body)):
        got.extend(decoder.feed(body[i : i + 1]))
    assert got == events


def test_partial_line_is_buffered():
    decoder = FrameDecoder()
    assert decoder.feed('data: {"del') == []
    assert decoder.pending == 'data: {"del'
    assert decoder.feed('ta": "x"}\n\n') == [TextDelta("x")]


def test_malformed_and_foreign_lines_are_skipped():
    decoder = FrameDecoder()
    body = ': keepalive\n\ndata: {broken\n\nevent: ping\ndata: {"error": "Failed to get response"}\n\n'
    assert decoder.feed(body) == [StreamError("Failed to get response")]


def test_close_flushes_unterminated_final_frame():
    decoder = FrameDecoder()
    assert decoder.feed("data: [DONE]") == []
    assert decoder.close() == [Done()]
