import re
from typing import Optional

from tsupdate.models import AccessLevel, Arch, Target, UpdateItem


# [<level>[ -]+]<version>/<arch>/<product>/<filename> <size> bytes[ MD5:<digest>]
LINE_PATTERN = re.compile(
    r"^(?:(?P<level>[A-Za-z]+)[ \-]+)?"
    r"(?P<version>[^/\s]+)/"
    r"(?P<arch>[^/\s]+)/"
    r"(?P<product>[\w'][\w' ]*?)/"
    r"(?P<filename>[^/\s]+)\s+"
    r"(?P<size>\d+)\s+bytes"
    r"(?:\s+MD5:(?P<digest>[0-9A-Fa-f]+))?$"
)


def parse_line(
    line: str,
    level: AccessLevel,
    version: str,
    arch: Arch
) -> Optional[UpdateItem]:
    """Parse one manifest line into an UpdateItem.

    Lines that don't match the manifest grammar, or whose access level,
    version or architecture differ from the requested ones, return None.
    A line without an access level matches every level.

    Args:
        line: Raw manifest line, trailing newline allowed
        level: Access level of the run
        version: Version string of the run
        arch: Architecture of the run

    Returns:
        The parsed item, or None if the line is filtered out
    """
    match = LINE_PATTERN.match(line.strip())
    if not match:
        return None

    line_level = match.group('level')
    if line_level is not None and line_level != level.text:
        return None
    if match.group('version') != version:
        return None
    if match.group('arch') != arch.text:
        return None

    return UpdateItem(
        product=match.group('product'),
        filename=match.group('filename'),
        size=int(match.group('size')),
        digest=match.group('digest') or ""
    )


def format_line(item: UpdateItem, target: Target) -> str:
    """Render an item as a manifest line, newline included."""
    line = (
        f"{target.level.text} {target.version}/{target.arch.text}/"
        f"{item.product}/{item.filename} {item.size} bytes"
    )
    if item.has_digest:
        line += f" MD5:{item.digest.upper()}"
    return line + "\n"
