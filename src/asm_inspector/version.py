"""
Assembly version parsing and comparison.

Assembly versions are ordered numeric versions with four components:
major.minor.build.revision. Build and revision may be omitted in text
("1.2"), in which case they count as 0 for ordering purposes.
"""

import re
from dataclasses import dataclass, field
from typing import Tuple

from .error_handling import VersionParseError

VERSION_PATTERN = re.compile(r"^[0-9]+(\.[0-9]+){1,3}$")
MAX_COMPONENT = 2147483647


@dataclass(frozen=True, order=True)
class AssemblyVersion:
    """
    A parsed 4-component version.

    Equality and ordering use the numeric components only. ``raw`` keeps the
    text the version was parsed from, so two textually different strings
    ("1.0" and "1.0.0.0") compare equal here but stay distinguishable.
    """

    components: Tuple[int, int, int, int]
    raw: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str) -> "AssemblyVersion":
        """Parse a version string, raising VersionParseError if malformed."""
        if not isinstance(text, str):
            raise VersionParseError(repr(text), "version must be a string")

        stripped = text.strip()
        if not VERSION_PATTERN.match(stripped):
            raise VersionParseError(
                text, "expected 2 to 4 dot-separated non-negative integers"
            )

        numbers = [int(part) for part in stripped.split(".")]
        if any(number > MAX_COMPONENT for number in numbers):
            raise VersionParseError(text, "component out of range")

        numbers.extend([0] * (4 - len(numbers)))
        return cls(components=tuple(numbers), raw=text)

    @classmethod
    def from_parts(
        cls, major: int, minor: int, build: int = 0, revision: int = 0
    ) -> "AssemblyVersion":
        """Build a version from metadata integers."""
        components = (major, minor, build, revision)
        return cls(components=components, raw=".".join(str(c) for c in components))

    @property
    def major(self) -> int:
        return self.components[0]

    @property
    def minor(self) -> int:
        return self.components[1]

    @property
    def build(self) -> int:
        return self.components[2]

    @property
    def revision(self) -> int:
        return self.components[3]

    def __str__(self) -> str:
        return self.raw or ".".join(str(c) for c in self.components)


def is_valid_version(text: str) -> bool:
    """Check whether a string parses as an assembly version."""
    try:
        AssemblyVersion.parse(text)
    except VersionParseError:
        return False
    return True
