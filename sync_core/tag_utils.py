import logging
import re
from functools import cmp_to_key
from typing import Callable, Dict, List, Optional, Tuple, Union

from wcmatch import fnmatch

from sync_core.errors import PatternCompileError
from sync_core.models import DEFAULT_TAG_PATTERN_TYPE, TagPattern
from sync_core.semver_utils import compare_versions

Matcher = Callable[[str], bool]
Ranker = Callable[[str, str], int]

_default_logger = logging.getLogger(__name__)


def _check_brackets(pattern: str) -> None:
    """Raise PatternCompileError for a '[' without a closing ']'."""
    i, n = 0, len(pattern)
    while i < n:
        if pattern[i] == '[':
            j = i + 1
            if j < n and pattern[j] in '!^':
                j += 1
            if j < n and pattern[j] == ']':
                j += 1
            while j < n and pattern[j] != ']':
                j += 1
            if j >= n:
                raise PatternCompileError(f"Unbalanced '[' in glob pattern {pattern!r}")
            i = j
        i += 1


# minimatch dialect: [!...] and [^...] both negate, {a,b} alternates, case-sensitive
GLOB_FLAGS = fnmatch.BRACE | fnmatch.CASE


def glob_matcher(pattern: str) -> Matcher:
    _check_brackets(pattern)
    return lambda tag: fnmatch.fnmatch(tag, pattern, flags=GLOB_FLAGS)


def regex_matcher(pattern: str) -> Matcher:
    try:
        regex = re.compile(pattern)
    except re.error as e:
        raise PatternCompileError(f"Invalid tag regex {pattern!r}: {e}") from e
    return lambda tag: regex.fullmatch(tag) is not None


def version_ranker(pattern: str) -> Ranker:
    return compare_versions


# type -> (matcher factory, ranker factory). Matching and ranking are picked
# independently; every type currently ranks by version precedence, even when
# the matched tags are not version shaped.
TAG_STRATEGIES: Dict[str, Tuple[Callable[[str], Matcher], Callable[[str], Ranker]]] = {
    'glob': (glob_matcher, version_ranker),
    'semver': (glob_matcher, version_ranker),
    'regex': (regex_matcher, version_ranker),
}


def _strategy(pattern: TagPattern, logger) -> Tuple[Callable[[str], Matcher], Callable[[str], Ranker]]:
    strategy = TAG_STRATEGIES.get(pattern.type)
    if strategy is None:
        logger.debug(f"Unknown tag pattern type '{pattern.type}', using {DEFAULT_TAG_PATTERN_TYPE}")
        strategy = TAG_STRATEGIES[DEFAULT_TAG_PATTERN_TYPE]
    return strategy


def _as_pattern(pattern: Union[str, TagPattern]) -> TagPattern:
    return pattern if isinstance(pattern, TagPattern) else TagPattern.parse(pattern)


def compile_matcher(pattern: Union[str, TagPattern], logger=None) -> Matcher:
    """Compile a tag pattern into a predicate over tag strings.

    Malformed patterns fail closed: the returned predicate matches nothing.
    """
    logger = logger or _default_logger
    pattern = _as_pattern(pattern)
    matcher_factory, _ = _strategy(pattern, logger)
    try:
        return matcher_factory(pattern.pattern)
    except PatternCompileError as e:
        logger.warning(f"{e}; pattern '{pattern.raw}' matches no tags")
        return lambda tag: False


def compile_ranker(pattern: Union[str, TagPattern], logger=None) -> Ranker:
    """Compile a tag pattern into a comparator returning -1, 0 or 1."""
    logger = logger or _default_logger
    pattern = _as_pattern(pattern)
    _, ranker_factory = _strategy(pattern, logger)
    return ranker_factory(pattern.pattern)


def select_latest(tags: List[str], pattern: Union[str, TagPattern], logger=None) -> Optional[str]:
    """Pick the highest ranked tag satisfying the pattern, or None."""
    matcher = compile_matcher(pattern, logger)
    ranker = compile_ranker(pattern, logger)
    matching = sorted((t for t in tags if matcher(t)), key=cmp_to_key(ranker))
    if not matching:
        return None
    return matching[-1]


def resolve_latest(repository: str, pattern: Union[str, TagPattern], list_tags: Callable[[str], List[str]], logger) -> Optional[str]:
    """Return the tag that should be running for repository, or None when nothing matches.

    Registry failures propagate as RegistryFetchError.
    """
    tags = list_tags(repository)
    latest = select_latest(tags, pattern, logger)
    if latest is None:
        logger.warning(f"No matching tag found for {repository} with tag_pattern {pattern}")
        return None
    logger.debug(f"Latest tag for {repository} matching '{pattern}': {latest}")
    return latest
