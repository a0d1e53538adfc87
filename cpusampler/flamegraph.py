"""Rendering of folded stack lines as an SVG flame graph."""

from __future__ import annotations

import io
import logging
import zlib
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator
from xml.sax.saxutils import escape, quoteattr

_log = logging.getLogger(__name__)

_XPAD = 10
_SVG_NAMESPACE = "http://www.w3.org/2000/svg"
_CHAR_WIDTH = 0.59


@dataclass
class Options:
    """Appearance of a flame graph."""

    title: str = "Flame Graph"
    subtitle: str | None = None
    count_name: str = "samples"
    image_width: int = 1200
    frame_height: int = 16
    font_type: str = "Verdana"
    font_size: int = 12
    min_width: float = 0.1
    inverted: bool = False
    reverse_stack_order: bool = False
    background: str = "#eeeeee"


@dataclass
class _Node:
    name: str
    count: int = 0
    children: dict[str, _Node] = field(default_factory=dict)


def _parse_line(line: str) -> tuple[list[str], int] | None:
    text = line.strip()
    if not text:
        return None
    stack, sep, count_text = text.rpartition(" ")
    stack = stack.strip()
    if not sep or not stack:
        return None
    try:
        count = int(count_text)
    except ValueError:
        return None
    if count < 0:
        return None
    return stack.split(";"), count


def _build_tree(lines: Iterable[str], reverse: bool) -> _Node:
    root = _Node("all")
    for line in lines:
        parsed = _parse_line(line)
        if parsed is None:
            _log.warning("ignoring unparsable line: %r", line)
            continue
        frames, count = parsed
        if reverse:
            frames.reverse()
        root.count += count
        node = root
        for name in frames:
            node = node.children.setdefault(name, _Node(name))
            node.count += count
    return root


def _layout(root: _Node, per_sample: float, min_width: float) -> Iterator[tuple[_Node, int, int]]:
    """Yield (node, depth, first sample) for every frame wide enough to draw."""
    pending = [(root, 0, 0)]
    while pending:
        node, depth, start = pending.pop()
        if node.count * per_sample < min_width:
            continue
        yield node, depth, start
        children = []
        offset = start
        for name in sorted(node.children):
            child = node.children[name]
            children.append((child, depth + 1, offset))
            offset += child.count
        pending.extend(reversed(children))


def _color(name: str) -> str:
    digest = zlib.crc32(name.encode("utf-8"))
    v1 = (digest & 0xFF) / 255
    v2 = ((digest >> 8) & 0xFF) / 255
    v3 = ((digest >> 16) & 0xFF) / 255
    return f"rgb({205 + int(50 * v3)},{int(230 * v1)},{int(55 * v2)})"


def _label(name: str, width: float, font_size: int) -> str:
    fits = int(width / (font_size * _CHAR_WIDTH))
    if fits < 3:
        return ""
    if len(name) <= fits:
        return name
    return name[: fits - 2] + ".."


def _write(writer: Any, text: str) -> None:
    binary = isinstance(writer, (io.RawIOBase, io.BufferedIOBase)) or "b" in str(
        getattr(writer, "mode", "")
    )
    writer.write(text.encode("utf-8") if binary else text)


def from_lines(options: Options | None, lines: Iterable[str], writer: Any) -> None:
    """Render folded lines ``frame;frame;... count`` as an SVG into ``writer``.

    Lines that cannot be parsed are skipped; raises :class:`ValueError` when no
    samples remain.
    """
    opts = options if options is not None else Options()
    root = _build_tree(lines, opts.reverse_stack_order)
    if root.count == 0:
        raise ValueError("No stack counts found")

    per_sample = (opts.image_width - 2 * _XPAD) / root.count
    frames = list(_layout(root, per_sample, opts.min_width))
    max_depth = max(depth for _, depth, _ in frames)

    ypad1 = opts.font_size * (5 if opts.subtitle else 3)
    ypad2 = opts.font_size * 2 + 10
    height = ypad1 + ypad2 + (max_depth + 1) * opts.frame_height
    width = opts.image_width

    out = [
        '<?xml version="1.0" standalone="no"?>\n',
        f'<svg version="1.1" width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}" xmlns="{_SVG_NAMESPACE}">\n',
        f'<rect x="0" y="0" width="{width}" height="{height}" '
        f"fill={quoteattr(opts.background)}/>\n",
        f'<text x="{width / 2:.1f}" y="{opts.font_size * 2}" text-anchor="middle" '
        f"font-family={quoteattr(opts.font_type)} font-size=\"{opts.font_size + 5}\">"
        f"{escape(opts.title)}</text>\n",
    ]
    if opts.subtitle:
        out.append(
            f'<text x="{width / 2:.1f}" y="{opts.font_size * 4}" text-anchor="middle" '
            f"font-family={quoteattr(opts.font_type)} font-size=\"{opts.font_size}\">"
            f"{escape(opts.subtitle)}</text>\n"
        )

    for node, depth, start in frames:
        x = _XPAD + start * per_sample
        w = node.count * per_sample
        if opts.inverted:
            y = ypad1 + depth * opts.frame_height
        else:
            y = height - ypad2 - (depth + 1) * opts.frame_height
        percent = 100 * node.count / root.count
        tooltip = f"{node.name} ({node.count:,} {opts.count_name}, {percent:.2f}%)"
        out.append(
            f"<g><title>{escape(tooltip)}</title>"
            f'<rect x="{x:.1f}" y="{y}" width="{w:.1f}" height="{opts.frame_height - 1}" '
            f'fill="{_color(node.name)}" rx="2" ry="2"/>'
            f'<text x="{x + 3:.1f}" y="{y + opts.frame_height - 4}" '
            f"font-family={quoteattr(opts.font_type)} font-size=\"{opts.font_size}\">"
            f"{escape(_label(node.name, w, opts.font_size))}</text></g>\n"
        )
    out.append("</svg>\n")
    _write(writer, "".join(out))