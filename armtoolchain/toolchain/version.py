"""
Version identifiers and release descriptors.

A VersionId names one toolchain release (``21.1.1``, rendered ``v21.1.1``).
Release tags in the index wrap the name in a prefix and suffix, e.g.
``release-21.1.1-ATfE``.
"""

import functools
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from armtoolchain.core.exceptions import InvalidVersionError

_VERSION_PATTERN = re.compile(r"^[0-9A-Za-z][0-9A-Za-z._+-]*$")
_COMPONENT_SPLIT = re.compile(r"[._+-]")

LATEST_ALIAS = "latest"


def is_latest_alias(token: str) -> bool:
    """Check whether a token is the mutable "latest" alias."""
    return token.strip().lower() == LATEST_ALIAS


@functools.total_ordering
@dataclass(frozen=True)
class VersionId:
    """
    Immutable, ordered identifier of one toolchain release.

    Build instances with VersionId.parse() (user input) or
    VersionId.from_tag() (index data); both validate the name.

    Example:
        >>> v = VersionId.parse("v21.1.1")
        >>> v.name, str(v)
        ('21.1.1', 'v21.1.1')
        >>> VersionId.parse("20.1.0") < v
        True
    """

    name: str

    def __post_init__(self):
        if not _VERSION_PATTERN.match(self.name):
            raise InvalidVersionError(
                f"Invalid toolchain version: {self.name!r}. "
                "Expected an identifier like 21.1.1 or v21.1.1"
            )

    @classmethod
    def parse(cls, token: str) -> "VersionId":
        """
        Validate a user-supplied version token.

        A single leading ``v`` is stripped.

        Raises:
            InvalidVersionError: If the token is empty, the "latest" alias or
                contains characters outside ``[0-9A-Za-z._+-]``
        """
        if token is None:
            raise InvalidVersionError("Version token cannot be empty")

        token = str(token).strip()
        if is_latest_alias(token):
            raise InvalidVersionError(
                "'latest' is an alias and must be resolved against the release index"
            )
        if len(token) > 1 and token[0] in "vV" and token[1].isdigit():
            token = token[1:]

        if not token:
            raise InvalidVersionError("Version token cannot be empty")

        return cls(token)

    @classmethod
    def from_tag(cls, tag_name: str, prefix: str, suffix: str) -> "VersionId":
        """Extract the version from a release tag such as ``release-21.1.1-ATfE``."""
        name = tag_name
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
        if suffix and name.endswith(suffix):
            name = name[: -len(suffix)]
        return cls(name)

    def to_tag(self, prefix: str, suffix: str) -> str:
        """Release tag for this version."""
        return f"{prefix}{self.name}{suffix}"

    @property
    def sort_key(self) -> Tuple:
        """
        Ordering key: numeric components compare numerically, others lexically.

        Numeric components sort before textual ones at the same position.
        """
        key = []
        for part in _COMPONENT_SPLIT.split(self.name):
            if part.isdigit():
                key.append((0, int(part), ""))
            else:
                key.append((1, 0, part))
        return tuple(key)

    def __lt__(self, other):
        if not isinstance(other, VersionId):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __str__(self) -> str:
        return f"v{self.name}"


@dataclass(frozen=True)
class ReleaseDescriptor:
    """
    Everything needed to fetch one release for one platform.

    Attributes:
        version: Concrete version (never the "latest" alias)
        url: Download URL of the platform archive
        sha256: Expected lowercase hex SHA-256 of the archive
        platform: Platform key, e.g. 'linux-x64'
        asset_name: File name of the archive
        size: Archive size in bytes, if the index reports it
    """

    version: VersionId
    url: str
    sha256: str
    platform: str
    asset_name: str
    size: Optional[int] = None

    @property
    def cache_key(self) -> str:
        """Key of the download lock and cache directory for this release."""
        return f"{self.version}-{self.platform}"


__all__ = ["VersionId", "ReleaseDescriptor", "LATEST_ALIAS", "is_latest_alias"]
