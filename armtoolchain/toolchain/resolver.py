"""
Version resolution against the remote release index.

The index is a GitHub-style releases API: a listing endpoint returning the
most recent releases and a ``/tags/<tag>`` endpoint returning one release.
Each release carries assets; each asset has a sibling ``<asset>.sha256``
file holding its checksum.

Resolution is read-only and has no side effects, so callers may retry it
freely. Nothing here retries on its own.
"""

import logging
import re
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import requests
from requests.exceptions import RequestException, Timeout

from armtoolchain.core.config import ManagerConfig
from armtoolchain.core.exceptions import (
    InvalidVersionError,
    ResolutionFailed,
    ResolutionTimeout,
    VersionNotFound,
)
from armtoolchain.core.platform import PlatformInfo, detect_platform
from armtoolchain.toolchain.version import ReleaseDescriptor, VersionId, is_latest_alias

logger = logging.getLogger(__name__)

try:
    __version__ = package_version("armtoolchain")
except PackageNotFoundError:
    __version__ = "0.1.0"

USER_AGENT = f"armtoolchain/{__version__}"

ALLOWED_EXTENSIONS = ("tar.xz", "zip", "dmg")

_SHA256_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def create_session(config: ManagerConfig) -> requests.Session:
    """Create an HTTP session carrying the client's identity and credentials."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    if config.github_token:
        session.headers["Authorization"] = f"Bearer {config.github_token}"
    return session


class ReleaseIndex:
    """
    Thin client for the remote release index.

    Every transport failure becomes ResolutionFailed (ResolutionTimeout for
    timeouts); malformed payloads do too.
    """

    def __init__(self, config: ManagerConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.index_url.rstrip("/")
        self.session = session or create_session(config)

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.get(url, timeout=self.config.timeout, **kwargs)
        except Timeout as e:
            raise ResolutionTimeout(f"Release index timed out: {url}") from e
        except RequestException as e:
            raise ResolutionFailed(f"Release index unreachable: {url}: {e}") from e

    def _json(self, response: requests.Response) -> Any:
        if not response.ok:
            raise ResolutionFailed(
                f"Release index returned HTTP {response.status_code} for {response.url}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise ResolutionFailed(f"Malformed release index response: {e}") from e

    def list_releases(self) -> List[Dict[str, Any]]:
        """Most recent published releases (drafts excluded)."""
        logger.debug(f"Fetching release listing from {self.base_url}")
        response = self._get(
            self.base_url,
            params={"per_page": self.config.releases_per_page},
            headers={"Accept": "application/vnd.github+json"},
        )
        payload = self._json(response)

        if not isinstance(payload, list):
            raise ResolutionFailed("Malformed release index: expected a list of releases")

        releases = []
        for release in payload:
            if not isinstance(release, dict) or "tag_name" not in release:
                raise ResolutionFailed("Malformed release index: release without tag_name")
            if release.get("draft"):
                continue
            releases.append(release)
        return releases

    def get_release_by_tag(self, tag_name: str) -> Dict[str, Any]:
        """
        Fetch a single release.

        Raises:
            VersionNotFound: If the index has no release with this tag
        """
        logger.info(f"Fetching release data for {tag_name}")
        response = self._get(
            f"{self.base_url}/tags/{tag_name}",
            headers={"Accept": "application/vnd.github+json"},
        )
        if response.status_code == 404:
            raise VersionNotFound(tag_name)

        release = self._json(response)
        if not isinstance(release, dict) or "tag_name" not in release:
            raise ResolutionFailed(f"Malformed release payload for {tag_name}")
        return release

    def fetch_checksum(self, asset_url: str) -> str:
        """
        Fetch the expected SHA-256 published next to an asset.

        The checksum file usually reads ``<checksum> <filename>``; only the
        first whitespace-separated token is used.
        """
        parts = urlsplit(asset_url)
        checksum_url = urlunsplit(parts._replace(path=f"{parts.path}.sha256"))

        logger.debug(f"Fetching checksum from {checksum_url}")
        response = self._get(checksum_url, headers={"Accept": "*/*"})
        if not response.ok:
            raise ResolutionFailed(
                f"Checksum file unavailable (HTTP {response.status_code}): {checksum_url}"
            )

        tokens = response.text.split()
        checksum = tokens[0] if tokens else ""
        if not _SHA256_PATTERN.match(checksum):
            raise ResolutionFailed(f"Malformed checksum file: {checksum_url}")
        return checksum.lower()


def select_asset(
    release: Dict[str, Any], platform_info: PlatformInfo
) -> Dict[str, Any]:
    """
    Pick the archive for a host platform from a release's assets.

    An asset matches when its dash-separated name components include the
    host OS and one of the accepted architectures, and its extension is
    one of ALLOWED_EXTENSIONS.

    Raises:
        ResolutionFailed: If no asset matches, listing the candidates
    """
    assets = release.get("assets") or []
    os_name = platform_info.asset_os
    arches = platform_info.asset_arches

    logger.debug(
        f"Searching {len(assets)} assets for {os_name} {'/'.join(arches)} "
        f"({', '.join(ALLOWED_EXTENSIONS)})"
    )

    for asset in assets:
        name = asset.get("name", "")
        components = name.split("-")
        last, _, extension = components[-1].partition(".")
        components[-1] = last

        correct_os = os_name in components
        correct_arch = any(arch in components for arch in arches)
        correct_extension = extension in ALLOWED_EXTENSIONS

        if correct_os and correct_arch and correct_extension:
            if not asset.get("browser_download_url"):
                raise ResolutionFailed(f"Asset {name} has no download URL")
            logger.debug(f"Found compatible asset: {name}")
            return asset

    candidates = "\n".join(f"  - {a.get('name', '?')}" for a in assets) or "  (none)"
    raise ResolutionFailed(
        f"No compatible toolchain asset for {os_name} {'/'.join(arches)} "
        f"in {release.get('tag_name')}.\nCandidates:\n{candidates}"
    )


class VersionResolver:
    """
    Maps version tokens to concrete release descriptors.

    Example:
        >>> resolver = VersionResolver(ReleaseIndex(config), config)
        >>> descriptor = resolver.resolve("latest")
        >>> str(descriptor.version)
        'v21.1.1'
    """

    def __init__(
        self,
        index: ReleaseIndex,
        config: ManagerConfig,
        platform_info: Optional[PlatformInfo] = None,
    ):
        self.index = index
        self.tag_prefix = config.tag_prefix
        self.tag_suffix = config.tag_suffix
        self.platform_info = platform_info or detect_platform()

    def _release_versions(self) -> List[tuple]:
        pairs = []
        for release in self.index.list_releases():
            tag = release["tag_name"]
            if self.tag_suffix and not tag.endswith(self.tag_suffix):
                continue
            try:
                version = VersionId.from_tag(tag, self.tag_prefix, self.tag_suffix)
            except InvalidVersionError:
                logger.warning(f"Ignoring release with unparseable tag: {tag}")
                continue
            pairs.append((version, release))
        return pairs

    def available_versions(self) -> List[VersionId]:
        """Versions currently listed by the index, newest first."""
        return sorted((v for v, _ in self._release_versions()), reverse=True)

    def latest_release(self) -> tuple:
        """Return (version, release) of the newest release in the listing."""
        pairs = self._release_versions()
        if not pairs:
            raise ResolutionFailed(
                f"Failed to determine the latest toolchain version: no release "
                f"tag ends with '{self.tag_suffix}'"
            )
        return max(pairs, key=lambda pair: pair[0])

    def resolve(self, token: str) -> ReleaseDescriptor:
        """
        Resolve a version token to a ReleaseDescriptor for the host platform.

        ``latest`` is always looked up in the index; it is never cached.

        Raises:
            InvalidVersionError: If the token is malformed
            VersionNotFound: If an explicit version is absent from the index
            ResolutionFailed: If the index is unreachable or malformed, or the
                release has no asset for this platform
        """
        if token is None or is_latest_alias(token):
            version, release = self.latest_release()
            logger.info(f"Latest toolchain release is {version}")
        else:
            version = VersionId.parse(token)
            try:
                release = self.index.get_release_by_tag(
                    version.to_tag(self.tag_prefix, self.tag_suffix)
                )
            except VersionNotFound as e:
                raise VersionNotFound(str(version)) from e

        asset = select_asset(release, self.platform_info)
        url = asset["browser_download_url"]
        size = asset.get("size")

        return ReleaseDescriptor(
            version=version,
            url=url,
            sha256=self.index.fetch_checksum(url),
            platform=self.platform_info.platform_string(),
            asset_name=asset["name"],
            size=int(size) if size else None,
        )


__all__ = [
    "ReleaseIndex",
    "VersionResolver",
    "select_asset",
    "create_session",
    "USER_AGENT",
]
