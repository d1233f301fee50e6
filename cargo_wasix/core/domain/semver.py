"""
L1 Domain — Semantic versions and Cargo-style version requirements (pure).

``Version`` is a comparable value type; ``VersionReq`` is a set of
comparators that must all match, with the same operator semantics as
Cargo (``=``, ``>``, ``>=``, ``<``, ``<=``, ``~``, ``^``, bare = caret,
``*`` / ``x`` wildcards).  No I/O.

    >>> VersionReq.parse("<2.0.0").matches(Version.parse("1.2.0"))
    True
    >>> VersionReq.parse(">=0.3, <0.4.5").matches(Version.parse("0.4.5"))
    False
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering

_VERSION_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_COMPARATOR_RE = re.compile(
    r"^(?P<op>=|>=|<=|>|<|~|\^)?\s*v?"
    r"(?P<major>\d+|\*|x|X)"
    r"(?:\.(?P<minor>\d+|\*|x|X))?"
    r"(?:\.(?P<patch>\d+|\*|x|X))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)

_WILDCARDS = ("*", "x", "X")


def _pre_key(pre: tuple[str, ...]) -> tuple:
    """Sort key for a pre-release; an empty pre-release sorts last."""
    if not pre:
        return (1,)
    parts = []
    for ident in pre:
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return (0, tuple(parts))


@total_ordering
@dataclass(frozen=True)
class Version:
    """A semantic version. Build metadata is kept but never compared."""

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str) -> Version:
        m = _VERSION_RE.match(text.strip())
        if not m:
            raise ValueError(f"invalid semantic version: {text!r}")
        pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
        return cls(
            int(m.group("major")),
            int(m.group("minor")),
            int(m.group("patch")),
            pre,
            m.group("build") or "",
        )

    @classmethod
    def coerce(cls, text: str) -> Version:
        """Parse leniently: ``116`` → 116.0.0, ``1.2`` → 1.2.0."""
        text = text.strip()
        core = text.lstrip("v").split("-", 1)[0].split("+", 1)[0]
        missing = 3 - len(core.split("."))
        if 0 < missing < 3:
            head, sep, tail = text.partition(core)
            text = head + core + ".0" * missing + tail
        return cls.parse(text)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.pre))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.build:
            text += "+" + self.build
        return text


@dataclass(frozen=True)
class Comparator:
    """One ``<op><partial version>`` term of a requirement.

    ``minor`` / ``patch`` are ``None`` when omitted or wildcarded.
    """

    op: str
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Comparator:
        m = _COMPARATOR_RE.match(text.strip())
        if not m:
            raise ValueError(f"invalid version comparator: {text!r}")
        op = m.group("op") or "^"
        raw = [m.group("major"), m.group("minor"), m.group("patch")]
        if raw[0] in _WILDCARDS:
            raise ValueError(f"wildcard major version needs to be alone: {text!r}")
        nums: list[int | None] = []
        wildcard = False
        for part in raw:
            if part is None or part in _WILDCARDS:
                wildcard = wildcard or part in _WILDCARDS
                nums.append(None)
            else:
                if nums and nums[-1] is None:
                    raise ValueError(f"unexpected version after wildcard: {text!r}")
                nums.append(int(part))
        if wildcard:
            if m.group("op") not in (None, "="):
                raise ValueError(f"wildcards cannot be combined with {op!r}: {text!r}")
            op = "="
        pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
        if pre and nums[2] is None:
            raise ValueError(f"pre-release requires a full version: {text!r}")
        return cls(op, nums[0], nums[1], nums[2], pre)  # type: ignore[arg-type]

    def matches(self, ver: Version) -> bool:
        if self.op == "=":
            return self._exact(ver)
        if self.op == ">":
            return self._greater(ver)
        if self.op == ">=":
            return self._exact(ver) or self._greater(ver)
        if self.op == "<":
            return self._less(ver)
        if self.op == "<=":
            return self._exact(ver) or self._less(ver)
        if self.op == "~":
            return self._tilde(ver)
        return self._caret(ver)

    def pre_is_compatible(self, ver: Version) -> bool:
        """A pre-release only matches comparators naming the same release."""
        return (
            bool(self.pre)
            and self.major == ver.major
            and self.minor == ver.minor
            and self.patch == ver.patch
        )

    # ── Operator semantics ──────────────────────────────────────

    def _exact(self, ver: Version) -> bool:
        if ver.major != self.major:
            return False
        if self.minor is not None and ver.minor != self.minor:
            return False
        if self.patch is not None and ver.patch != self.patch:
            return False
        return _pre_key(ver.pre) == _pre_key(self.pre)

    def _greater(self, ver: Version) -> bool:
        if ver.major != self.major:
            return ver.major > self.major
        if self.minor is None:
            return False
        if ver.minor != self.minor:
            return ver.minor > self.minor
        if self.patch is None:
            return False
        if ver.patch != self.patch:
            return ver.patch > self.patch
        return _pre_key(ver.pre) > _pre_key(self.pre)

    def _less(self, ver: Version) -> bool:
        if ver.major != self.major:
            return ver.major < self.major
        if self.minor is None:
            return False
        if ver.minor != self.minor:
            return ver.minor < self.minor
        if self.patch is None:
            return False
        if ver.patch != self.patch:
            return ver.patch < self.patch
        return _pre_key(ver.pre) < _pre_key(self.pre)

    def _tilde(self, ver: Version) -> bool:
        if ver.major != self.major:
            return False
        if self.minor is None:
            return True
        if ver.minor != self.minor:
            return False
        if self.patch is None:
            return True
        return ver.patch > self.patch or (
            ver.patch == self.patch and _pre_key(ver.pre) >= _pre_key(self.pre)
        )

    def _caret(self, ver: Version) -> bool:
        if ver.major != self.major:
            return False
        if self.minor is None:
            return True
        if self.patch is None:
            if self.major > 0:
                return ver.minor >= self.minor
            return ver.minor == self.minor
        if self.major > 0:
            if ver.minor != self.minor:
                return ver.minor > self.minor
            return ver.patch > self.patch or (
                ver.patch == self.patch and _pre_key(ver.pre) >= _pre_key(self.pre)
            )
        if self.minor > 0:
            if ver.minor != self.minor:
                return False
            return ver.patch > self.patch or (
                ver.patch == self.patch and _pre_key(ver.pre) >= _pre_key(self.pre)
            )
        return (
            ver.minor == self.minor
            and ver.patch == self.patch
            and _pre_key(ver.pre) >= _pre_key(self.pre)
        )

    def __str__(self) -> str:
        parts = [str(self.major)]
        if self.minor is not None:
            parts.append(str(self.minor))
            if self.patch is not None:
                parts.append(str(self.patch))
        text = ".".join(parts)
        if self.pre:
            text += "-" + ".".join(self.pre)
        return f"{self.op}{text}"


@dataclass(frozen=True)
class VersionReq:
    """A comma-separated set of comparators; all must match.

    An empty set (``*``) matches every non-pre-release version.
    """

    comparators: tuple[Comparator, ...] = ()
    source: str = field(default="*", compare=False)

    @classmethod
    def parse(cls, text: str) -> VersionReq:
        text = (text or "").strip()
        if text in ("", *_WILDCARDS):
            return cls((), "*")
        comparators = tuple(Comparator.parse(part) for part in text.split(","))
        return cls(comparators, text)

    @classmethod
    def exact(cls, version: str | Version) -> VersionReq:
        return cls.parse(f"={version}")

    def matches(self, ver: Version | str) -> bool:
        if isinstance(ver, str):
            ver = Version.parse(ver)
        if not all(c.matches(ver) for c in self.comparators):
            return False
        if not ver.is_prerelease:
            return True
        return any(c.pre_is_compatible(ver) for c in self.comparators)

    def __str__(self) -> str:
        return self.source
