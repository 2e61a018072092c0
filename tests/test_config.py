"""
Tests for environment configuration.
"""
from app.core.config import DeployConfig, get_deploy_config, get_worker_config


class TestDeployConfig:
    """Tests for get_deploy_config."""

    def test_lists_and_flags(self, monkeypatch):
        monkeypatch.setenv("ECS_SUBNETS", "subnet-a, subnet-b,,")
        monkeypatch.setenv("ECS_SECURITY_GROUPS", "sg-1")
        monkeypatch.setenv("ECS_ASSIGN_PUBLIC_IP", "false")

        config = get_deploy_config()

        assert config.ecs_subnets == ("subnet-a", "subnet-b")
        assert config.ecs_security_groups == ("sg-1",)
        assert config.ecs_assign_public_ip is False

    def test_blank_docker_network_disables_it(self, monkeypatch):
        monkeypatch.setenv("DOCKER_NETWORK", "")
        assert get_deploy_config().docker_network is None

    def test_base_url_override_wins(self):
        config = DeployConfig(
            artifact_bucket="bucket",
            aws_region="eu-north-1",
            artifact_base_url_override="https://cdn.example.test/out/",
        )
        assert config.artifact_base_url == "https://cdn.example.test/out"

    def test_base_url_from_bucket(self):
        config = DeployConfig(artifact_bucket="bucket", aws_region="eu-north-1")
        assert config.artifact_base_url == "https://s3.eu-north-1.amazonaws.com/bucket/__outputs"

    def test_base_url_unset_without_bucket(self):
        assert DeployConfig().artifact_base_url is None


class TestWorkerConfig:
    """Tests for get_worker_config."""

    def test_reads_launch_environment(self, monkeypatch):
        monkeypatch.setenv("PROJECT_ID", "demo")
        monkeypatch.setenv("GIT_REPOSITORY__URL", "https://example.com/r.git")
        monkeypatch.setenv("ARTIFACT_BUCKET", "artifacts")
        monkeypatch.setenv("BUILD_COMMAND", "npm run build -- --mode production")

        config = get_worker_config()

        assert config.missing == []
        assert config.project_id == "demo"
        assert config.build_command == ("npm", "run", "build", "--", "--mode", "production")
        assert config.install_command == ("npm", "install")

    def test_missing_variables(self, monkeypatch):
        for name in ("PROJECT_ID", "GIT_REPOSITORY__URL", "ARTIFACT_BUCKET"):
            monkeypatch.delenv(name, raising=False)

        assert get_worker_config().missing == ["PROJECT_ID", "GIT_REPOSITORY__URL", "ARTIFACT_BUCKET"]

    def test_upload_concurrency_floor(self, monkeypatch):
        monkeypatch.setenv("UPLOAD_CONCURRENCY", "0")
        assert get_worker_config().upload_concurrency == 1
