"""
Unit tests for container name normalization and identifier resolution.
"""

import pytest

from updates.errors import MalformedIdentifierError
from utils.names import (
    COMPOSE_PROJECT_LABEL,
    COMPOSE_SERVICE_LABEL,
    normalize_container_name,
    resolve_container_identifier,
)


@pytest.mark.unit
class TestNormalizeContainerName:
    """Leading slash handling"""

    def test_strips_leading_slash(self):
        assert normalize_container_name("/web") == "web"

    def test_plain_name_unchanged(self):
        assert normalize_container_name("web") == "web"

    def test_only_one_slash_stripped(self):
        assert normalize_container_name("//web") == "/web"

    def test_empty_and_none(self):
        assert normalize_container_name("") == ""
        assert normalize_container_name(None) == ""

    @pytest.mark.parametrize("name", ["/web", "web", "", "/", "a/b", "web-1"])
    def test_idempotent_for_docker_names(self, name):
        once = normalize_container_name(name)
        assert normalize_container_name(once) == once


@pytest.mark.unit
class TestResolveContainerIdentifier:
    """Identifier precedence: project-service, service, name, ID"""

    def test_project_and_service(self):
        labels = {COMPOSE_PROJECT_LABEL: "shop", COMPOSE_SERVICE_LABEL: "db"}
        assert resolve_container_identifier(labels, "/shop_db_1", "abc") == "shop-db"

    def test_service_only(self):
        labels = {COMPOSE_SERVICE_LABEL: "db"}
        assert resolve_container_identifier(labels, "/shop_db_1", "abc") == "db"

    def test_project_only_falls_back_to_name(self):
        labels = {COMPOSE_PROJECT_LABEL: "shop"}
        assert resolve_container_identifier(labels, "/web", "abc") == "web"

    def test_name(self):
        assert resolve_container_identifier({}, "/web", "abc") == "web"

    def test_empty_name_uses_id(self):
        assert resolve_container_identifier(None, "", "abc123") == "abc123"

    def test_nothing_usable_raises(self):
        with pytest.raises(MalformedIdentifierError):
            resolve_container_identifier({}, "", "")
