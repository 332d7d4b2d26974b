from functools import partial

from imgcdn.buffer import BufferState, TextBuffer
from imgcdn.config import SiteConfig
from imgcdn.rewrite import rewrite_css


def test_chunks_are_emitted_once_on_terminal_chunk():
    seen = []
    buffer = TextBuffer(lambda text: seen.append(text) or text.upper())

    assert buffer.feed("a", last=False) is None
    assert buffer.feed("b", last=False) is None
    assert buffer.state is BufferState.ACCUMULATING
    assert buffer.feed("c", last=True) == "ABC"

    assert seen == ["abc"]
    assert buffer.is_flushed
    assert buffer.buffer == ""


def test_without_rewrite_emits_verbatim():
    buffer = TextBuffer()
    buffer.feed("body { ", last=False)
    assert buffer.feed("color: red }", last=True) == "body { color: red }"


def test_buffer_resets_between_nodes():
    buffer = TextBuffer()
    assert buffer.feed("first", last=True) == "first"
    assert buffer.is_flushed

    assert buffer.feed("sec", last=False) is None
    assert buffer.state is BufferState.ACCUMULATING
    assert buffer.feed("ond", last=True) == "second"


def test_empty_terminal_chunk_flushes_collected_text():
    buffer = TextBuffer()
    buffer.feed("x", last=False)
    assert buffer.feed("", last=True) == "x"


def test_split_url_is_rewritten_whole():
    buffer = TextBuffer(partial(rewrite_css, config=SiteConfig(quality=90)))
    assert buffer.feed(".bg{background:url('/wp-con", last=False) is None
    assert buffer.feed("tent/themes/t/bg.p", last=False) is None
    assert buffer.feed("ng')}", last=True) == (
        ".bg{background:url('/cdn-cgi/image/quality=90,format=auto,onerror=redirect"
        "/wp-content/themes/t/bg.png')}"
    )
