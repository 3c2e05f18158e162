"""Image resolution and architecture verification.

Builds the fully qualified image reference for a build, pulls it on the
target host and checks that the image's recorded architecture matches the
host's.  Starting a mismatched image fails at container start with an
exec-format error that no later stage can recover from, so a mismatch
that survives one explicit re-pull is always fatal.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass

from src.deploy_shared.exceptions import (
    ArchitectureMismatchError,
    ConfigurationError,
    TransportError,
)
from src.deploy_shared.models import ReleaseCandidate
from src.deploy_shared.protocols import CommandRunner
from src.deploy_shared.utils import arch_matches, normalize_arch

logger = logging.getLogger(__name__)


def build_tag(build_number: int, suffix: str = "") -> str:
    """Image tag for a build: ``"42"`` or ``"42-<suffix>"``."""
    if build_number < 1:
        raise ConfigurationError(f"Build number must be positive, got {build_number}")
    suffix = suffix.strip().lstrip("-")
    return f"{build_number}-{suffix}" if suffix else str(build_number)


def make_release(
    registry: str,
    image_name: str,
    build_number: int,
    suffix: str = "",
    platform: str = "",
) -> ReleaseCandidate:
    """Create the :class:`ReleaseCandidate` for *build_number*."""
    if not image_name:
        raise ConfigurationError("image.image_name is required")
    return ReleaseCandidate(
        registry=registry,
        image_name=image_name,
        tag=build_tag(build_number, suffix),
        platform=platform,
        build_number=build_number,
    )


@dataclass
class ResolvedImage:
    """Result of a successful resolution."""
    release: ReleaseCandidate
    host_arch: str
    image_arch: str
    repulled: bool = False

    @property
    def platform(self) -> str:
        return f"linux/{normalize_arch(self.host_arch)}"


class ImageResolver:
    """Pulls a release on the target host and verifies its architecture."""

    def __init__(
        self,
        runner: CommandRunner,
        registry_username: str = "",
        registry_password: str = "",
        pull_timeout: float = 900,
    ) -> None:
        self.runner = runner
        self.registry_username = registry_username
        self.registry_password = registry_password
        self.pull_timeout = pull_timeout

    async def host_architecture(self) -> str:
        """Architecture reported by ``uname -m`` on the host."""
        result = await self.runner.run("uname -m")
        arch = result.stdout.strip()
        if not result.ok or not arch:
            raise TransportError(f"Could not read host architecture: {result.stderr.strip()}")
        return arch

    async def login(self, registry: str) -> bool:
        """Log in to *registry* when credentials were supplied.

        The password is sent on stdin, never on the command line.
        """
        if not (registry and self.registry_username and self.registry_password):
            return False
        cmd = (
            f"docker login {shlex.quote(registry)} "
            f"-u {shlex.quote(self.registry_username)} --password-stdin"
        )
        result = await self.runner.run(cmd, input_text=self.registry_password)
        if not result.ok:
            logger.warning("Registry login to %s failed: %s", registry, result.stderr.strip())
            return False
        logger.info("Logged in to %s", registry)
        return True

    async def pull(self, image_ref: str, platform: str = "") -> bool:
        cmd = "docker pull"
        if platform:
            cmd += f" --platform {shlex.quote(platform)}"
        cmd += f" {shlex.quote(image_ref)}"
        result = await self.runner.run(cmd, timeout=self.pull_timeout)
        if not result.ok:
            logger.error("Pulling %s failed: %s", image_ref, result.stderr.strip())
        return result.ok

    async def image_architecture(self, image_ref: str) -> str:
        """Architecture recorded in the local image metadata ('' if unknown)."""
        result = await self.runner.run(
            f"docker image inspect --format '{{{{.Architecture}}}}' {shlex.quote(image_ref)}"
        )
        if not result.ok:
            return ""
        return result.stdout.strip()

    async def remove_stale(self, image_ref: str) -> None:
        """Remove local containers and the cached image for *image_ref*.

        Keeps the runtime from reusing a cached image of the wrong
        architecture that shares the tag.
        """
        ref = shlex.quote(image_ref)
        await self.runner.run(
            f"docker ps -aq --filter ancestor={ref} | xargs -r docker rm -f"
        )
        await self.runner.run(f"docker image rm -f {ref}")
        logger.info("Removed stale local copies of %s", image_ref)

    async def resolve(self, release: ReleaseCandidate, force: bool = False) -> ResolvedImage:
        """Pull *release* and verify it against the host architecture.

        Args:
            release: The candidate to deploy.
            force: The operator override.  It does not bypass an
                architecture mismatch; it only makes the refusal louder.

        Raises:
            ArchitectureMismatchError: the image still disagrees with the
                host after one explicit re-pull.
            TransportError: the host could not be reached.
        """
        host_arch = await self.host_architecture()
        logger.info("Host architecture: %s", host_arch)

        await self.login(release.registry)
        platform = release.platform or f"linux/{normalize_arch(host_arch)}"
        pulled = await self.pull(release.image_ref, platform)
        image_arch = await self.image_architecture(release.image_ref)

        if arch_matches(host_arch, image_arch):
            logger.info("Image %s architecture %s matches host", release.image_ref, image_arch)
            return ResolvedImage(release=release, host_arch=host_arch, image_arch=image_arch)

        logger.warning(
            "Image %s reports architecture '%s', host is '%s'; re-pulling for linux/%s",
            release.image_ref, image_arch or "unknown", host_arch, normalize_arch(host_arch),
        )
        await self.remove_stale(release.image_ref)
        repulled = await self.pull(release.image_ref, f"linux/{normalize_arch(host_arch)}")
        image_arch = await self.image_architecture(release.image_ref)

        if arch_matches(host_arch, image_arch):
            logger.info("Re-pulled %s for %s", release.image_ref, image_arch)
            return ResolvedImage(
                release=release, host_arch=host_arch, image_arch=image_arch, repulled=True
            )

        if force:
            logger.critical(
                "ARCHITECTURE MISMATCH for %s (host %s, image %s). "
                "The force flag does not override this check.",
                release.image_ref, host_arch, image_arch or "unknown",
            )
        pull_failed = not (pulled or repulled)
        if pull_failed:
            logger.error("Both pulls of %s failed; no usable local image", release.image_ref)
        raise ArchitectureMismatchError(
            host_arch, image_arch, release.image_ref, pull_failed=pull_failed
        )
