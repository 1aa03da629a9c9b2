"""Unit tests for Project and Service factories."""

import pytest
from fakes import FakeEngine, exit_with

from compose_exec.models import ServiceDescriptor, ServiceNotFoundError
from compose_exec.services.container import Command, Project, Service


@pytest.fixture
def mapping():
    return {
        "name": "shop",
        "services": {
            "web": {"image": "nginx:alpine", "ports": ["8080:80"], "networks": ["front"]},
            "worker": {"image": "python:3.12", "command": ["python", "worker.py"]},
        },
        "volumes": {"data": None},
        "networks": {"front": {"driver": "bridge"}},
    }


class TestProject:
    """Test Project.from_mapping() and lookups."""

    def test_from_mapping(self, mapping, tmp_path):
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))

        assert project.name == "shop"
        assert project.working_dir == str(tmp_path)
        assert project.service_names() == ["web", "worker"]
        assert project.context.networks["front"].driver == "bridge"
        assert "data" in project.context.volumes

    def test_service_descriptors_named(self, mapping, tmp_path):
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))
        web = project.service("web")
        assert isinstance(web, Service)
        assert web.descriptor.name == "web"
        assert web.descriptor.ports[0].published == "8080"

    def test_iterates_services(self, mapping, tmp_path):
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))
        assert [s.name for s in project] == ["web", "worker"]

    def test_yaml_loaded_scalars(self, tmp_path):
        mapping = {
            "services": {
                "app": {
                    "image": "alpine",
                    "environment": {"PORT": 8080, "DEBUG": True},
                    "user": 1000,
                    "labels": {"tier": 1},
                }
            }
        }
        app = Project.from_mapping(mapping, working_dir=str(tmp_path)).service("app").descriptor
        assert app.environment == {"PORT": "8080", "DEBUG": "true"}
        assert app.user == "1000"
        assert app.labels == {"tier": "1"}

    def test_unknown_service(self, mapping, tmp_path):
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))
        with pytest.raises(ServiceNotFoundError):
            project.service("db")

    def test_command_args(self, mapping, tmp_path):
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))
        cmd = project.command("worker", "python", "-V")
        assert isinstance(cmd, Command)
        assert cmd.args == ["python", "-V"]
        assert cmd.project is project.context

    @pytest.mark.asyncio
    async def test_unknown_service_error_is_deferred(self, mapping, tmp_path):
        """The lookup failure surfaces from the command's operations."""
        engine = FakeEngine()
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))
        cmd = project.command("db", "true", engine=engine)

        with pytest.raises(ServiceNotFoundError):
            await cmd.run()
        with pytest.raises(ServiceNotFoundError):
            await cmd.output()
        with pytest.raises(ServiceNotFoundError):
            await cmd.combined_output()
        with pytest.raises(ServiceNotFoundError):
            await cmd.wait_until_healthy()
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_runs_service_command(self, mapping, tmp_path):
        engine = FakeEngine(exit_with(0, stdout=b"Python 3.12"), images=["python:3.12"])
        project = Project.from_mapping(mapping, working_dir=str(tmp_path))

        out = await project.command("worker", engine=engine).output()

        assert out == b"Python 3.12"
        assert engine.only_container().config["Cmd"] == ["python", "worker.py"]
        assert "shop_default" in engine.networks


class TestService:
    """Test Service.from_descriptor()."""

    def test_default_project(self):
        service = Service.from_descriptor(ServiceDescriptor(name="tool", image="busybox"))
        assert service.project.name == "default"
        assert service.name == "tool"

    def test_command(self, project):
        service = Service.from_descriptor(ServiceDescriptor(name="tool", image="busybox"), project)
        cmd = service.command("ls", "-l")
        assert cmd.args == ["ls", "-l"]
        assert cmd.service.name == "tool"
