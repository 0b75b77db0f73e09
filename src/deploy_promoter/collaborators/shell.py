"""
Shell command collaborators.

Each collaborator renders an argv template and runs it as a subprocess. The
defaults mirror the project's make targets: ``deploy-prep`` for the build,
``prisma migrate deploy`` for migrations and an SSH ``pm2 reload`` for deploys.
"""

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from ..exceptions import BuildError, ConfigurationError, DeployError, MigrationError, StageError
from ..models import BuildArtifact, MigrationSet
from .base import Builder, Deployer, Migrator

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 2000


def render_argv(template: Sequence[str], context: dict[str, str]) -> list[str]:
    """Substitute ``{placeholders}`` in every argument."""
    try:
        return [part.format(**context) for part in template]
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown placeholder {e} in command template: {' '.join(template)}"
        ) from e


class CommandRunner:
    """Runs argv commands and maps failures to a stage error class."""

    def __init__(self, working_dir: Path | None = None, env: dict[str, str] | None = None):
        self.working_dir = working_dir
        self.env = env

    async def run(self, argv: Sequence[str], error_cls: type[StageError] = StageError) -> str:
        """Run ``argv``; returns stdout or raises ``error_cls`` on failure."""
        command = " ".join(argv)
        logger.debug(f"Running command: {command}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.working_dir) if self.working_dir else None,
                env=self.env,
            )
        except OSError as e:
            raise error_cls(f"Failed to start '{command}': {e}", cause=e) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timeout or shutdown: do not leave the child running
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            detail = stderr.decode(errors="replace")[-OUTPUT_TAIL_CHARS:].strip()
            raise error_cls(f"Command '{command}' exited with {process.returncode}: {detail}")

        return stdout.decode(errors="replace").strip()


class ShellBuilder(Builder):
    """Runs the build steps and derives the artifact reference."""

    def __init__(
        self,
        steps: Sequence[Sequence[str]],
        artifact_template: str = "{revision_id}",
        migration_version_command: Sequence[str] | None = None,
        runner: CommandRunner | None = None,
    ):
        self.steps = [list(step) for step in steps]
        self.artifact_template = artifact_template
        self.migration_version_command = migration_version_command
        self.runner = runner or CommandRunner()

    async def build(self, revision_id: str) -> BuildArtifact:
        context = {"revision_id": revision_id}
        for step in self.steps:
            await self.runner.run(render_argv(step, context), BuildError)

        migration_version = None
        if self.migration_version_command:
            output = await self.runner.run(
                render_argv(self.migration_version_command, context), BuildError
            )
            migration_version = output.splitlines()[-1].strip() if output else None

        artifact_ref = render_argv([self.artifact_template], context)[0]
        logger.info(f"Built revision {revision_id} as {artifact_ref}")
        return BuildArtifact(artifact_ref=artifact_ref, migration_version=migration_version)


class ShellMigrator(Migrator):
    """Applies and reverts migrations with templated commands."""

    def __init__(
        self,
        apply_command: Sequence[str],
        revert_command: Sequence[str] | None = None,
        runner: CommandRunner | None = None,
    ):
        self.apply_command = list(apply_command)
        self.revert_command = list(revert_command) if revert_command else None
        self.runner = runner or CommandRunner()

    @staticmethod
    def _context(migration_set: MigrationSet) -> dict[str, str]:
        return {
            "environment": migration_set.environment,
            "target_host": migration_set.target_host,
            "revision_id": migration_set.revision_id,
            "migration_version": migration_set.version,
        }

    async def apply(self, migration_set: MigrationSet) -> None:
        argv = render_argv(self.apply_command, self._context(migration_set))
        await self.runner.run(argv, MigrationError)
        logger.info(
            f"Applied migration {migration_set.version} on {migration_set.environment}"
        )

    async def revert(self, migration_set: MigrationSet) -> None:
        if not self.revert_command:
            raise MigrationError(
                "No revert command configured",
                environment=migration_set.environment,
                revision_id=migration_set.revision_id,
            )
        argv = render_argv(self.revert_command, self._context(migration_set))
        await self.runner.run(argv, MigrationError)
        logger.info(
            f"Reverted migration {migration_set.version} on {migration_set.environment}"
        )


class ShellDeployer(Deployer):
    """Deploys through a templated remote command, typically ssh + pm2 reload."""

    def __init__(self, command: Sequence[str], runner: CommandRunner | None = None):
        self.command = list(command)
        self.runner = runner or CommandRunner()

    async def deploy(self, artifact_ref: str, target_host: str) -> None:
        argv = render_argv(
            self.command, {"artifact_ref": artifact_ref, "target_host": target_host}
        )
        await self.runner.run(argv, DeployError)
        logger.info(f"Deployed {artifact_ref} to {target_host}")
