"""Rollback guidance and the opt-in automatic rollback.

The advisor is purely advisory: it derives the previous release from the
build number and prints the command an operator would run.  Executing a
rollback is a separate, explicitly enabled step, because reverting
production on any failure (transient ones included) is risky.
"""

from __future__ import annotations

import logging
import shlex

from src.deploy_shared.constants import IMAGE_ENV_VAR
from src.deploy_shared.models import (
    DeploymentTarget,
    ReleaseCandidate,
    RollbackAdvice,
    ServiceSet,
)
from src.rollout.image_resolver import build_tag
from src.rollout.stack_controller import StackController

logger = logging.getLogger(__name__)


def previous_release(release: ReleaseCandidate) -> ReleaseCandidate | None:
    """The release one build earlier, with the same tag suffix."""
    if release.build_number <= 1:
        return None
    suffix = release.tag.partition("-")[2]
    previous = release.build_number - 1
    return ReleaseCandidate(
        registry=release.registry,
        image_name=release.image_name,
        tag=build_tag(previous, suffix),
        platform=release.platform,
        build_number=previous,
    )


class RollbackAdvisor:
    """Computes the manual recovery command for a release."""

    def __init__(self, target: DeploymentTarget, services: ServiceSet | None = None) -> None:
        self.target = target
        self.services = services or ServiceSet()

    def recovery_command(self, previous: ReleaseCandidate) -> str:
        compose = " ".join(
            shlex.quote(part)
            for part in [
                "docker", "compose",
                "-f", self.target.compose_file,
                "-p", self.target.project_name,
                "up", "-d", *self.services.app_tier,
            ]
        )
        remote = (
            f"cd {shlex.quote(self.target.deploy_path)} && "
            f"docker pull {shlex.quote(previous.image_ref)} && "
            f"{IMAGE_ENV_VAR}={shlex.quote(previous.image_ref)} {compose}"
        )
        ssh = ["ssh"]
        if self.target.port != 22:
            ssh.extend(["-p", str(self.target.port)])
        ssh.append(self.target.destination)
        return f"{' '.join(ssh)} {shlex.quote(remote)}"

    def advise(self, release: ReleaseCandidate) -> RollbackAdvice:
        previous = previous_release(release)
        if previous is None:
            return RollbackAdvice(
                current_build=release.build_number,
                notes=["No earlier build exists; rollback is not possible."],
            )
        return RollbackAdvice(
            current_build=release.build_number,
            previous_build=previous.build_number,
            previous_image=previous.image_ref,
            command=self.recovery_command(previous),
            notes=[
                "Database migrations are not reverted; restore the latest "
                "backup if the schema change must be undone.",
            ],
        )


async def execute_rollback(
    stack: StackController, release: ReleaseCandidate
) -> bool:
    """Redeploy the previous release for the application tier.

    Only called when automatic rollback was explicitly enabled.

    Returns:
        True when the previous image was pulled and started.
    """
    previous = previous_release(release)
    if previous is None:
        logger.error("Automatic rollback impossible: no build before %s", release.build_number)
        return False
    logger.warning("Rolling back application tier to %s", previous.image_ref)
    pull = await stack.runner.run(f"docker pull {shlex.quote(previous.image_ref)}")
    if not pull.ok:
        logger.error("Rollback pull of %s failed: %s", previous.image_ref, pull.stderr.strip())
        return False
    result = await stack.start_wave(stack.services.app_tier, previous)
    return result.ok
