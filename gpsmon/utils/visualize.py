"""
Helpers that turn raw packet bytes into text that is safe to put on a
terminal or into a log line.

Both renderers take a ``maxlen`` bound that plays the role of the caller's
output buffer: the returned string is always shorter than ``maxlen``.
"""

# Largest packet the framer will hand us
MAX_PACKET_LENGTH = 9216

# Room for a full hexdump of the largest packet
DUMP_BUFFER = MAX_PACKET_LENGTH * 2 + 1

ESCAPE_WIDTH = 4  # len("\\x00")


def is_printable(byte):
    """Same set as C isprint() in the C locale."""
    return 0x20 <= byte < 0x7f


def is_space(byte):
    """Same set as C isspace() in the C locale."""
    return byte == 0x20 or 0x09 <= byte <= 0x0d


def _escape(byte):
    return f"\\x{byte:02x}"


def render_printable(buf, maxlen=DUMP_BUFFER):
    """
    Dress up a mostly printable buffer.

    Printable characters pass through, as does a trailing CR/LF line ending.
    Everything else becomes a ``\\xHH`` escape.

    Args:
        buf (bytes): Raw bytes to render
        maxlen (int): Size of the output buffer, output stays below it

    Returns:
        str: Display-safe text
    """
    out = []
    used = 0
    length = len(buf)
    for i in range(length):
        if used + ESCAPE_WIDTH >= maxlen:
            break
        byte = buf[i]
        if is_printable(byte) \
                or (byte == 0x0a and i == length - 1) \
                or (byte == 0x0d and i >= length - 2):
            out.append(chr(byte))
            used += 1
        else:
            out.append(_escape(byte))
            used += ESCAPE_WIDTH
    return "".join(out)


def render_conditional(buf, textual=False, maxlen=DUMP_BUFFER):
    """
    Pass a buffer through visibilized if it is all printable, hexdump otherwise.

    Args:
        buf (bytes): Raw packet bytes
        textual (bool): True when the packet type is a text protocol (NMEA, JSON);
            the trailing line ending is then dropped instead of escaped.
        maxlen (int): Size of the output buffer, output stays below it

    Returns:
        str: Display-safe text
    """
    length = len(buf)
    printable = all(is_printable(b) or is_space(b) for b in buf)

    if not printable:
        count = min(length, (maxlen - 1) // 2)
        return buf[:count].hex()

    out = []
    used = 0
    for i in range(length):
        if used >= maxlen - 1:
            break
        byte = buf[i]
        if is_printable(byte):
            out.append(chr(byte))
            used += 1
            continue
        if textual:
            if i == length - 1 and byte == 0x0a:
                continue
            if i == length - 2 and byte == 0x0d and buf[-1] == 0x0a:
                continue
        if used + ESCAPE_WIDTH >= maxlen:
            break
        out.append(_escape(byte))
        used += ESCAPE_WIDTH
    return "".join(out)


def packet_line(buf, textual=False, maxlen=DUMP_BUFFER):
    """Format one received packet the way the packet window shows it."""
    return f"({len(buf)}) {render_conditional(buf, textual, maxlen)}\n"
