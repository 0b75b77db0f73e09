"""
Unit tests for the shell and HTTP collaborators.
"""

import asyncio
import sys

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from deploy_promoter.collaborators import (
    CommandRunner,
    HttpHealthProber,
    ShellBuilder,
    ShellDeployer,
    ShellMigrator,
    create_collaborators,
    render_argv,
)
from deploy_promoter.config import parse_config
from deploy_promoter.enums import HealthStatus
from deploy_promoter.exceptions import (
    BuildError,
    ConfigurationError,
    DeployError,
    MigrationError,
    StageError,
)
from deploy_promoter.models import MigrationSet


class RecordingRunner(CommandRunner):
    """Captures argv instead of spawning processes."""

    def __init__(self, output: str = ""):
        super().__init__()
        self.commands: list[list[str]] = []
        self.output = output

    async def run(self, argv, error_cls=StageError):
        self.commands.append(list(argv))
        return self.output


MIGRATION_SET = MigrationSet(
    environment="staging",
    target_host="ubuntu@staging.internal",
    revision_id="abc123",
    version="20240101_init",
)


@pytest.mark.unit
class TestCommandRunner:
    """Subprocess execution."""

    def test_render_argv(self):
        argv = render_argv(["ssh", "{target_host}", "deploy {artifact_ref}"], {
            "target_host": "ubuntu@dev.internal",
            "artifact_ref": "abc123",
        })

        assert argv == ["ssh", "ubuntu@dev.internal", "deploy abc123"]

    def test_render_argv_unknown_placeholder(self):
        with pytest.raises(ConfigurationError, match="revision"):
            render_argv(["echo", "{revision}"], {"revision_id": "abc123"})

    @pytest.mark.asyncio
    async def test_returns_stdout(self):
        runner = CommandRunner()

        output = await runner.run([sys.executable, "-c", "print('built')"])

        assert output == "built"

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_stage_error(self):
        runner = CommandRunner()
        script = "import sys; sys.stderr.write('prisma error'); sys.exit(3)"

        with pytest.raises(DeployError) as exc_info:
            await runner.run([sys.executable, "-c", script], DeployError)

        assert "exited with 3" in str(exc_info.value)
        assert "prisma error" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        runner = CommandRunner()

        with pytest.raises(BuildError, match="Failed to start"):
            await runner.run(["definitely-not-a-real-command-4821"], BuildError)

    @pytest.mark.asyncio
    async def test_working_dir(self, tmp_path):
        runner = CommandRunner(working_dir=tmp_path)

        output = await runner.run([sys.executable, "-c", "import os; print(os.getcwd())"])

        assert output == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_cancelled_command_is_killed(self):
        runner = CommandRunner()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                runner.run([sys.executable, "-c", "import time; time.sleep(30)"]),
                timeout=0.5,
            )


@pytest.mark.unit
class TestShellCollaborators:
    """Template rendering for build, migrate and deploy."""

    @pytest.mark.asyncio
    async def test_builder_runs_steps_in_order(self):
        runner = RecordingRunner(output="npm notice\n20240101_init\n")
        builder = ShellBuilder(
            [["npm", "install"], ["git", "checkout", "{revision_id}"]],
            artifact_template="build-{revision_id}",
            migration_version_command=["ls", "prisma/migrations"],
            runner=runner,
        )

        artifact = await builder.build("abc123")

        assert runner.commands == [
            ["npm", "install"],
            ["git", "checkout", "abc123"],
            ["ls", "prisma/migrations"],
        ]
        assert artifact.artifact_ref == "build-abc123"
        assert artifact.migration_version == "20240101_init"

    @pytest.mark.asyncio
    async def test_migrator_apply_and_revert(self):
        runner = RecordingRunner()
        migrator = ShellMigrator(
            ["ssh", "{target_host}", "migrate {revision_id}"],
            ["ssh", "{target_host}", "rollback {migration_version} on {environment}"],
            runner=runner,
        )

        await migrator.apply(MIGRATION_SET)
        await migrator.revert(MIGRATION_SET)

        assert runner.commands == [
            ["ssh", "ubuntu@staging.internal", "migrate abc123"],
            ["ssh", "ubuntu@staging.internal", "rollback 20240101_init on staging"],
        ]

    @pytest.mark.asyncio
    async def test_migrator_without_revert_command(self):
        migrator = ShellMigrator(["true"], runner=RecordingRunner())

        with pytest.raises(MigrationError, match="No revert command"):
            await migrator.revert(MIGRATION_SET)

    @pytest.mark.asyncio
    async def test_deployer(self):
        runner = RecordingRunner()
        deployer = ShellDeployer(["ssh", "{target_host}", "pm2 reload {artifact_ref}"], runner=runner)

        await deployer.deploy("abc123", "ubuntu@prod.internal")

        assert runner.commands == [["ssh", "ubuntu@prod.internal", "pm2 reload abc123"]]

    def test_create_collaborators_from_config(self, tmp_path):
        config = parse_config(
            {
                "environments": [
                    {
                        "name": "dev",
                        "rank": 1,
                        "target_host": "ubuntu@dev.internal",
                        "health_check_url": "http://dev.internal/health",
                    }
                ],
                "commands": {"working_dir": str(tmp_path)},
            }
        )

        collaborators = create_collaborators(config)

        assert isinstance(collaborators.builder, ShellBuilder)
        assert collaborators.builder.steps[0] == ["npm", "install"]
        assert collaborators.builder.runner.working_dir == tmp_path
        assert isinstance(collaborators.prober, HttpHealthProber)


@pytest.mark.unit
class TestHttpHealthProber:
    """Health probes against a local aiohttp server."""

    @pytest_asyncio.fixture
    async def server(self):
        async def healthy(request):
            return web.json_response({"status": "ok"})

        async def broken(request):
            return web.json_response({"status": "down"}, status=503)

        async def slow(request):
            await asyncio.sleep(0.5)
            return web.json_response({"status": "ok"})

        app = web.Application()
        app.router.add_get("/health", healthy)
        app.router.add_get("/broken", broken)
        app.router.add_get("/slow", slow)

        server = test_utils.TestServer(app)
        await server.start_server()
        yield server
        await server.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/health", HealthStatus.HEALTHY),
            ("/broken", HealthStatus.UNHEALTHY),
            ("/missing", HealthStatus.UNHEALTHY),
        ],
    )
    async def test_status_codes(self, server, path, expected):
        prober = HttpHealthProber()

        assert await prober.probe(str(server.make_url(path)), timeout=2) == expected

    @pytest.mark.asyncio
    async def test_probe_timeout_is_unhealthy(self, server):
        prober = HttpHealthProber()

        assert await prober.probe(str(server.make_url("/slow")), timeout=0.1) == HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_connection_refused_is_unhealthy(self):
        server = test_utils.TestServer(web.Application())
        await server.start_server()
        url = str(server.make_url("/health"))
        await server.close()

        assert await HttpHealthProber().probe(url, timeout=1) == HealthStatus.UNHEALTHY
