"""
Pipeline collaborators.

Abstract interfaces plus the shell and HTTP implementations wired from the
YAML configuration.
"""

from dataclasses import dataclass

from ..config import PromoterConfig
from .base import Builder, Deployer, HealthProber, Migrator
from .http import HttpHealthProber
from .shell import CommandRunner, ShellBuilder, ShellDeployer, ShellMigrator, render_argv


@dataclass
class Collaborators:
    """The four external collaborators a pipeline needs"""

    builder: Builder
    migrator: Migrator
    deployer: Deployer
    prober: HealthProber


def create_collaborators(config: PromoterConfig) -> Collaborators:
    """Create shell/HTTP collaborators from configuration."""
    commands = config.commands
    runner = CommandRunner(working_dir=commands.working_dir)

    return Collaborators(
        builder=ShellBuilder(
            commands.build,
            artifact_template=commands.artifact_ref,
            migration_version_command=commands.migration_version,
            runner=runner,
        ),
        migrator=ShellMigrator(commands.migrate, commands.revert, runner=runner),
        deployer=ShellDeployer(commands.deploy, runner=runner),
        prober=HttpHealthProber(),
    )


__all__ = [
    "Builder",
    "Collaborators",
    "CommandRunner",
    "Deployer",
    "HealthProber",
    "HttpHealthProber",
    "Migrator",
    "ShellBuilder",
    "ShellDeployer",
    "ShellMigrator",
    "create_collaborators",
    "render_argv",
]
