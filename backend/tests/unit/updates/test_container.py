"""
Unit tests for the read-only Container view and its label vocabulary.
"""

import pytest

from tests.test_helpers import create_container
from updates.container import (
    COMPOSE_DEPENDS_ON_LABEL,
    ENABLE_LABEL,
    MONITOR_ONLY_LABEL,
    NO_PULL_LABEL,
    PRE_UPDATE_TIMEOUT_LABEL,
    SCOPE_LABEL,
    STOP_TIMEOUT_LABEL,
    Container,
    parse_label_bool,
)
from updates.errors import ConfigurationVerificationError
from updates.types import UpdateParams
from utils.names import COMPOSE_PROJECT_LABEL, COMPOSE_SERVICE_LABEL


@pytest.mark.unit
class TestParseLabelBool:

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "t", " True "])
    def test_true_values(self, value):
        assert parse_label_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "False", "0", "f"])
    def test_false_values(self, value):
        assert parse_label_bool(value) is False

    @pytest.mark.parametrize("value", [None, "", "yes-please", "maybe"])
    def test_not_a_boolean(self, value):
        assert parse_label_bool(value) is None


@pytest.mark.unit
class TestContainerIdentity:

    def test_name_is_normalized(self):
        container = create_container("web")
        assert container.name == "web"
        assert container.info["Name"] == "/web"

    def test_identifier_uses_compose_labels(self):
        container = create_container("shop_db_1", labels={
            COMPOSE_PROJECT_LABEL: "shop",
            COMPOSE_SERVICE_LABEL: "db",
        })
        assert container.identifier == "shop-db"

    def test_identifier_falls_back_to_id(self):
        container = create_container("", container_id="abcdef123456789")
        assert container.identifier == "abcdef123456789"

    def test_missing_inspect_data(self):
        container = Container({})
        assert container.id == ""
        assert container.labels == {}
        assert container.links == []
        assert container.is_running is False


@pytest.mark.unit
class TestContainerImage:

    def test_untagged_image_gets_latest(self):
        assert create_container("web", image="nginx").image_name == "nginx:latest"

    def test_registry_port_is_not_a_tag(self):
        container = create_container("web", image="registry:5000/app")
        assert container.image_name == "registry:5000/app:latest"

    def test_tagged_image_unchanged(self):
        assert create_container("web", image="nginx:1.25").image_name == "nginx:1.25"

    def test_digest_reference_is_pinned(self):
        container = create_container("web", image="nginx@sha256:" + "a" * 64)
        assert container.is_pinned is True
        assert container.image_name == "nginx@sha256:" + "a" * 64

    def test_image_name_falls_back_to_repo_tags(self):
        container = Container(
            {"Id": "x" * 12, "Name": "/web", "Config": {}},
            {"Id": "sha256:abc", "RepoTags": ["redis:7"]},
        )
        assert container.image_name == "redis:7"

    def test_safe_image_id_without_image_info(self):
        container = Container({"Id": "x" * 12, "Name": "/web"})
        assert container.safe_image_id == ""


@pytest.mark.unit
class TestContainerLabels:

    def test_enable_label(self):
        assert create_container("a", labels={ENABLE_LABEL: "false"}).enabled() is False
        assert create_container("a", labels={ENABLE_LABEL: "true"}).enabled() is True
        assert create_container("a").enabled() is None

    def test_empty_scope_is_none(self):
        assert create_container("a", labels={SCOPE_LABEL: ""}).scope() is None
        assert create_container("a", labels={SCOPE_LABEL: "prod"}).scope() == "prod"

    def test_watchtower_label(self):
        assert create_container("wt", watchtower=True).is_watchtower is True
        assert create_container("a").is_watchtower is False

    def test_stop_timeout_label_needs_precedence(self):
        container = create_container("a", labels={STOP_TIMEOUT_LABEL: "1m"})
        assert container.stop_timeout(10.0) == 10.0
        assert container.stop_timeout(10.0, label_precedence=True) == 60.0

    def test_invalid_stop_timeout_label_uses_default(self):
        container = create_container("a", labels={STOP_TIMEOUT_LABEL: "soon"})
        assert container.stop_timeout(10.0, label_precedence=True) == 10.0

    def test_monitor_only_label_or_global(self):
        labelled = create_container("a", labels={MONITOR_ONLY_LABEL: "true"})
        plain = create_container("b")

        assert labelled.is_monitor_only(UpdateParams()) is True
        assert plain.is_monitor_only(UpdateParams(monitor_only=True)) is True
        assert plain.is_monitor_only(UpdateParams()) is False

    def test_label_precedence_overrides_global(self):
        container = create_container("a", labels={NO_PULL_LABEL: "false"})

        assert container.is_no_pull(UpdateParams(no_pull=True)) is True
        assert container.is_no_pull(UpdateParams(no_pull=True, label_precedence=True)) is False

    def test_hook_timeout_default_and_override(self):
        assert create_container("a").pre_update_timeout == 60
        assert create_container("a", labels={PRE_UPDATE_TIMEOUT_LABEL: "0"}).pre_update_timeout == 0
        assert create_container("a", labels={PRE_UPDATE_TIMEOUT_LABEL: "abc"}).pre_update_timeout == 60


@pytest.mark.unit
class TestContainerLinks:

    def test_depends_on_label(self):
        container = create_container("a", links=["b", "/c", " d "])
        assert container.links == ["b", "c", "d"]

    def test_compose_depends_on_is_project_qualified(self):
        container = create_container("shop_web_1", labels={
            COMPOSE_PROJECT_LABEL: "shop",
            COMPOSE_DEPENDS_ON_LABEL: "db:service_started:false,cache:service_healthy:true",
        })
        assert container.links == ["shop-db", "shop-cache"]

    def test_host_config_links_and_network_mode(self):
        container = create_container("a", host_config={
            "Links": ["/b:/a/b", "invalid"],
            "NetworkMode": "container:vpn",
        })
        assert container.links == ["b", "vpn"]

    def test_depends_on_label_wins_over_host_links(self):
        container = create_container("a", links=["x"], host_config={"Links": ["/b:/a/b"]})
        assert container.links == ["x"]


@pytest.mark.unit
class TestVerifyConfiguration:

    def test_valid_container(self):
        create_container("a").verify_configuration()

    def test_missing_host_config(self):
        container = Container({"Id": "a" * 12, "Name": "/a", "Config": {"Image": "nginx"}})
        with pytest.raises(ConfigurationVerificationError):
            container.verify_configuration()

    def test_exposed_ports_without_bindings(self):
        container = Container({
            "Id": "a" * 12,
            "Name": "/a",
            "Config": {"Image": "nginx", "ExposedPorts": {"80/tcp": {}}},
            "HostConfig": {},
        })
        with pytest.raises(ConfigurationVerificationError, match="port bindings"):
            container.verify_configuration()
