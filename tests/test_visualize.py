import pytest

from gpsmon.utils.visualize import packet_line, render_conditional, render_printable


def test_render_printable_keeps_sentence_and_line_ending():
    assert render_printable(b"$GPGGA,1,2\r\n") == "$GPGGA,1,2\r\n"


def test_render_printable_escapes_control_bytes():
    assert render_printable(b"a\x01b") == "a\\x01b"
    # CR is only passed through as part of the trailing line ending
    assert render_printable(b"a\rb\n") == "a\\x0db\n"


@pytest.mark.parametrize("raw", [
    b"\x00\xffabc\r\n",
    b"$PASHR,RID,\x7f*00\r\n",
    b"\xa0\xa2\x00\x02\x84\x00\x00\x84\xb0\xb3",
])
def test_render_printable_is_idempotent(raw):
    once = render_printable(raw)
    assert render_printable(once.encode("ascii")) == once


def test_render_printable_stays_within_bound():
    rendered = render_printable(b"\x00" * 100, maxlen=20)
    assert len(rendered) < 20
    assert rendered == "\\x00" * 4


def test_render_conditional_hexdumps_binary():
    raw = b"\xa0\xa2\x00\x02\x84\x00"
    rendered = render_conditional(raw)
    assert rendered == "a0a200028400"
    assert len(rendered) == 2 * len(raw)


def test_render_conditional_hexdump_is_bounded():
    assert len(render_conditional(b"\x00" * 100, maxlen=21)) == 20


def test_render_conditional_drops_trailer_for_textual_packets():
    assert render_conditional(b"$GPRMC,x\r\n", textual=True) == "$GPRMC,x"
    assert render_conditional(b'{"class":"SKY"}\n', textual=True) == '{"class":"SKY"}'


def test_render_conditional_escapes_trailer_for_other_packets():
    assert render_conditional(b"$GPRMC,x\r\n") == "$GPRMC,x\\x0d\\x0a"


def test_render_conditional_escapes_interior_whitespace():
    assert render_conditional(b"a\tb", textual=True) == "a\\x09b"


def test_packet_line_prefixes_length():
    assert packet_line(b"{}\n", textual=True) == "(3) {}\n"
    assert packet_line(b"\x01\x02") == "(2) 0102\n"


@pytest.mark.parametrize("raw", [b"$GPGGA,1,2*00", b"a\tb", b'{"class":"TPV"}'])
def test_render_conditional_is_idempotent_on_printable_input(raw):
    once = render_conditional(raw)
    assert render_conditional(once.encode("ascii")) == once


def test_render_conditional_hexdump_length_for_one_binary_byte():
    raw = b"$GPGGA,1\x00,2"
    rendered = render_conditional(raw)
    assert len(rendered) == 2 * len(raw)
    assert all(c in "0123456789abcdef" for c in rendered)
