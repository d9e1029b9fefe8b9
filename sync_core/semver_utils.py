from typing import Optional, Tuple

Segment = Tuple[int, int, str]


def _segment_key(segment: str) -> Segment:
    # Numeric identifiers rank below alphanumeric ones, as in SemVer prereleases
    if segment.isascii() and segment.isdigit():
        return (0, int(segment), '')
    return (1, 0, segment)


def parse_version(tag: str) -> Tuple[Tuple[Segment, ...], Optional[Tuple[Segment, ...]]]:
    """Split a tag into (core segments, prerelease segments or None).

    Accepts anything: a leading 'v' before a digit is stripped, '+build'
    metadata is ignored and the first '-' separates the prerelease.
    Non-numeric segments are kept and compared lexically.
    """
    cleaned = tag
    if cleaned[:1] in ('v', 'V') and cleaned[1:2].isdigit():
        cleaned = cleaned[1:]
    cleaned = cleaned.split('+', 1)[0]
    core, sep, prerelease = cleaned.partition('-')
    core_key = tuple(_segment_key(s) for s in core.split('.'))
    if not sep:
        return core_key, None
    return core_key, tuple(_segment_key(s) for s in prerelease.split('.'))


def version_sort_key(tag: str) -> tuple:
    """Total-order sort key for a tag.

    A release ranks above any prerelease of the same core. The raw tag is the
    last element, so only identical strings compare equal.
    """
    core, prerelease = parse_version(tag)
    if prerelease is None:
        return (core, 1, (), tag)
    return (core, 0, prerelease, tag)


def compare_versions(version1: str, version2: str) -> int:
    """Compare two tags by version precedence.

    Returns 1 if v1 > v2, -1 if v1 < v2, 0 if equal.
    """
    k1 = version_sort_key(version1)
    k2 = version_sort_key(version2)
    if k1 == k2:
        return 0
    return 1 if k1 > k2 else -1
