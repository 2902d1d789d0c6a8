"""Route pattern compiler for file middleware routing.

Converts route patterns into a regular expression plus ordered capture keys:
- "/blog/:slug"        -> named key "slug" matching one path segment
- "/files/:path+"      -> named key "path" spanning one or more segments
- "/:lang?/docs"       -> optional named key "lang"
- "(.*)/:name.js"      -> anonymous key 0 plus named key "name"
- re.compile(r"\\.md") -> used verbatim, one positional key per group
- ["/a", "/b/:id"]     -> alternation of both, keys concatenated
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from file_middleware_routing.exceptions import PatternCompileError

PathPattern = str | re.Pattern[str] | list[Any] | tuple[Any, ...]

_TOKEN_PATTERN = re.compile(
    r"(\\.)"
    r"|(?::(\w+)(?:\(((?:\\.|[^\\()])+)\))?|\(((?:\\.|[^\\()])+)\))([+*?])?"
)
_ESCAPE_STRING = re.compile(r"([.+*?=^!:${}()\[\]|/\\])")
_ESCAPE_GROUP = re.compile(r"(?<!\\)([=!:$/()])")
_MODIFIERS = frozenset("+*?")
_UNBALANCED = frozenset("()")


@dataclass(frozen=True)
class PatternOptions:
    """Options that control how a pattern compiles.

    Attributes:
        sensitive: Match case-sensitively (default is case-insensitive).
        strict: Disallow an optional trailing delimiter.
        end: Require the match to consume the whole path. False matches a
            prefix, which is what mounts use.
        delimiter: Default segment delimiter for placeholders.
        delimiters: Characters that may act as a placeholder prefix.
        ends_with: Extra strings that may terminate a match besides end of path.
    """

    sensitive: bool = False
    strict: bool = False
    end: bool = True
    delimiter: str = "/"
    delimiters: str = "./"
    ends_with: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.delimiter:
            raise PatternCompileError("PatternOptions.delimiter must not be empty")

    @property
    def flags(self) -> int:
        """Regex flags implied by these options."""
        return 0 if self.sensitive else re.IGNORECASE

    def with_changes(self, **changes: Any) -> "PatternOptions":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class Key:
    """A capture group in a compiled pattern.

    Placeholders in a pattern string produce named keys; anonymous groups
    and groups of a raw regex produce keys named by their ordinal.
    """

    name: str | int
    prefix: str | None = None
    delimiter: str | None = None
    optional: bool = False
    repeat: bool = False
    partial: bool = False
    pattern: str | None = None

    @property
    def is_named(self) -> bool:
        """Check if this key was declared with a :name placeholder."""
        return isinstance(self.name, str)


Token = str | Key


@dataclass(frozen=True)
class CompiledPattern:
    """A pattern compiled into a regex and its keys, in capture-group order."""

    regex: re.Pattern[str]
    keys: tuple[Key, ...]


def parse_pattern(text: str, options: PatternOptions | None = None) -> list[Token]:
    """Parse a pattern string into literal fragments and placeholder keys.

    Args:
        text: Pattern string to parse.
        options: Compile options (only delimiter settings are used).

    Returns:
        List of tokens in source order: str for literal text, Key for
        placeholders.

    Raises:
        PatternCompileError: If a group is unbalanced or a modifier is doubled.

    Examples:
        "/:year/:slug" -> [Key("year", prefix="/"), Key("slug", prefix="/")]
        "/posts/(\\d+)" -> ["/posts", Key(0, prefix="/", pattern="\\d+")]
    """
    opts = options or PatternOptions()
    tokens: list[Token] = []
    anonymous = 0
    index = 0
    path = ""
    path_escaped = False

    for match in _TOKEN_PATTERN.finditer(text):
        escaped, name, capture, group, modifier = match.groups()
        path += _literal(text, index, match.start())
        index = match.end()

        # Escaped characters are literal and never act as a prefix
        if escaped:
            path += escaped[1]
            path_escaped = True
            continue

        prev = ""
        next_char = text[index] if index < len(text) else None

        if not path_escaped and path and path[-1] in opts.delimiters:
            prev = path[-1]
            path = path[:-1]

        if path:
            tokens.append(path)
            path = ""
            path_escaped = False

        if modifier and next_char is not None and next_char in _MODIFIERS:
            raise PatternCompileError(
                f"Invalid modifier '{next_char}' at offset {index} in pattern {text!r}: "
                f"placeholder already has modifier '{modifier}'"
            )

        delimiter = prev or opts.delimiter
        custom = capture or group
        if custom:
            sub_pattern = _ESCAPE_GROUP.sub(r"\\\1", custom)
        else:
            sub_pattern = f"[^{_escape_string(delimiter)}]+?"

        if name:
            key_name: str | int = name
        else:
            key_name = anonymous
            anonymous += 1

        tokens.append(
            Key(
                name=key_name,
                prefix=prev,
                delimiter=delimiter,
                optional=modifier in ("?", "*"),
                repeat=modifier in ("+", "*"),
                partial=prev != "" and next_char is not None and next_char != prev,
                pattern=sub_pattern,
            )
        )

    if path or index < len(text):
        tokens.append(path + _literal(text, index, len(text)))

    return tokens


def compile_pattern(
    pattern: PathPattern,
    options: PatternOptions | None = None,
) -> CompiledPattern:
    """Compile a route pattern into a regex and its capture keys.

    Args:
        pattern: A pattern string, a compiled regex, or a list/tuple of either.
        options: Compile options. Defaults to PatternOptions().

    Returns:
        CompiledPattern whose regex groups line up with its keys.

    Raises:
        PatternCompileError: If the pattern is malformed or of an unsupported type.

    Examples:
        compile_pattern("/blog/:slug").keys -> (Key("slug", prefix="/", ...),)
        compile_pattern("").regex.pattern -> "^"
    """
    opts = options or PatternOptions()

    # A bare regex keeps its own flags
    if isinstance(pattern, re.Pattern):
        return CompiledPattern(regex=pattern, keys=_regex_keys(pattern))

    keys: list[Key] = []
    source = _to_regex_source(pattern, keys, opts)
    try:
        regex = re.compile(source, opts.flags)
    except re.error as exc:
        raise PatternCompileError(f"Invalid pattern {pattern!r}: {exc}") from exc

    return CompiledPattern(regex=regex, keys=tuple(keys))


def _to_regex_source(pattern: Any, keys: list[Key], options: PatternOptions) -> str:
    """Build regex source for any supported pattern type, appending keys."""
    if isinstance(pattern, str):
        return _string_to_regex(pattern, keys, options)
    if isinstance(pattern, re.Pattern):
        keys.extend(_regex_keys(pattern))
        return pattern.pattern
    if isinstance(pattern, (list, tuple)):
        return _sequence_to_regex(pattern, keys, options)
    raise PatternCompileError(
        f"Route pattern must be a string, compiled regex, or list of them, "
        f"got {type(pattern).__name__}"
    )


def _sequence_to_regex(
    patterns: Sequence[Any],
    keys: list[Key],
    options: PatternOptions,
) -> str:
    """Join each element as one branch of a non-capturing alternation."""
    parts = [_to_regex_source(element, keys, options) for element in patterns]
    return f"(?:{'|'.join(parts)})"


def _regex_keys(regex: re.Pattern[str]) -> tuple[Key, ...]:
    """Synthesize positional keys for the capture groups of a raw regex."""
    return tuple(Key(name=i) for i in range(regex.groups))


def _string_to_regex(text: str, keys: list[Key], options: PatternOptions) -> str:
    """Build anchored regex source for a pattern string."""
    if not text:
        return "^"

    tokens = parse_pattern(text, options)
    delimiter = _escape_string(options.delimiter)
    ends_with = "|".join([*(_escape_string(e) for e in options.ends_with), r"\Z"])
    is_end_delimited = False
    route = ""

    for i, token in enumerate(tokens):
        if isinstance(token, str):
            route += _escape_string(token)
            is_end_delimited = i == len(tokens) - 1 and token[-1] in options.delimiters
            continue

        prefix = _escape_string(token.prefix or "")
        if token.repeat:
            capture = f"(?:{token.pattern})(?:{prefix}(?:{token.pattern}))*"
        else:
            capture = token.pattern or ""

        keys.append(token)

        if token.optional:
            # A partial prefix stays outside the group so it is never left dangling
            if token.partial:
                route += f"{prefix}({capture})?"
            else:
                route += f"(?:{prefix}({capture}))?"
        else:
            route += f"{prefix}({capture})"

    if options.end:
        if not options.strict:
            route += f"(?:{delimiter})?"
        route += r"\Z" if ends_with == r"\Z" else f"(?={ends_with})"
    else:
        if not options.strict:
            route += f"(?:{delimiter}(?={ends_with}))?"
        if not is_end_delimited:
            route += f"(?={delimiter}|{ends_with})"

    return f"^{route}"


def _literal(text: str, start: int, stop: int) -> str:
    """Return raw literal text, rejecting stray group parentheses."""
    chunk = text[start:stop]
    if _UNBALANCED & set(chunk):
        char = "(" if "(" in chunk else ")"
        raise PatternCompileError(f"Unbalanced '{char}' in pattern {text!r}")
    return chunk


def _escape_string(text: str) -> str:
    """Escape regex metacharacters in literal text."""
    return _ESCAPE_STRING.sub(r"\\\1", text)
