"""
Docker Lifecycle Tests

These tests run real containers and need a reachable Docker daemon. They are
skipped otherwise. Images are pulled on first use.
"""

import asyncio
import secrets

import pytest

from compose_exec import (
    CancelScope,
    Cancelled,
    ExitError,
    Project,
    create_engine,
    down,
)

IMAGE = "alpine:3.20"


def docker_available() -> bool:
    try:
        engine = create_engine()
    except Exception:
        return False
    try:
        return engine.ping()
    except Exception:
        return False
    finally:
        engine.close()


pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not docker_available(), reason="Docker daemon not reachable"),
]


@pytest.fixture
def project(tmp_path):
    """Throwaway project; everything it creates is torn down afterwards."""
    name = f"cxtest{secrets.token_hex(4)}"
    mapping = {
        "name": name,
        "services": {
            "shell": {"image": IMAGE, "environment": {"GREETING": "hello"}},
            "web": {
                "image": IMAGE,
                "command": ["sleep", "60"],
                "healthcheck": {"test": ["CMD", "true"], "interval": "500ms", "start_interval": "100ms"},
            },
        },
    }
    yield Project.from_mapping(mapping, working_dir=str(tmp_path))
    asyncio.run(down(name))


class TestDockerLifecycle:
    """Test the command lifecycle against a real engine."""

    @pytest.mark.asyncio
    async def test_output(self, project):
        out = await project.command("shell", "sh", "-c", "echo $GREETING").output()
        assert out == b"hello\n"

    @pytest.mark.asyncio
    async def test_exit_status_and_stderr(self, project):
        cmd = project.command("shell", "sh", "-c", "echo oops >&2; exit 3")
        with pytest.raises(ExitError) as exc_info:
            await cmd.output()
        assert exc_info.value.exit_code == 3
        assert exc_info.value.stderr == b"oops\n"

    @pytest.mark.asyncio
    async def test_stdin(self, project):
        cmd = project.command("shell", "cat")
        cmd.stdin = b"round trip"
        assert await cmd.output() == b"round trip"

    @pytest.mark.asyncio
    async def test_bind_mount(self, project, tmp_path):
        (tmp_path / "data.txt").write_text("from host")
        mapping = {
            "name": project.name,
            "services": {"shell": {"image": IMAGE, "volumes": ["./:/data:ro"]}},
        }
        bound = Project.from_mapping(mapping, working_dir=str(tmp_path))

        assert await bound.command("shell", "cat", "/data/data.txt").output() == b"from host"

    @pytest.mark.asyncio
    async def test_cancel_stops_container(self, project):
        scope = CancelScope(timeout=1)
        cmd = project.command("shell", "sleep", "60", scope=scope)
        with pytest.raises(Cancelled):
            await cmd.run()

    @pytest.mark.asyncio
    async def test_wait_until_healthy(self, project):
        scope = CancelScope(timeout=30)
        cmd = project.command("web", scope=scope)
        await cmd.start()
        await cmd.wait_until_healthy()
        scope.cancel("done")
        with pytest.raises(Cancelled):
            await cmd.wait()
