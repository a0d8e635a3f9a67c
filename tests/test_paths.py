"""Tests for secretsmith.paths — path templating and anchoring."""

from pathlib import Path

import pytest

from secretsmith.errors import ConfigurationError
from secretsmith.manifest import SecretDescriptor
from secretsmith.paths import (
    denied_prefix,
    has_traversal,
    resolve_path,
    resolve_symlink,
    substitute,
)

REF = "vault://Homelab/Database/password"


def _secret(**kwargs) -> SecretDescriptor:
    return SecretDescriptor(reference=REF, **kwargs)


class TestHelpers:
    @pytest.mark.parametrize("path", ["../etc", "a/../b", "a/..", "/srv/../etc"])
    def test_traversal_detected(self, path):
        assert has_traversal(path)

    @pytest.mark.parametrize("path", ["a/b", "/etc/app/token", "a..b/c", "..hidden"])
    def test_no_traversal(self, path):
        assert not has_traversal(path)

    def test_denied_prefixes(self):
        assert denied_prefix("/etc/shadow") == "/etc/shadow"
        assert denied_prefix("/usr/bin/app") == "/usr/bin"
        assert denied_prefix("/proc/1/environ") == "/proc"

    def test_denylist_matches_whole_components(self):
        assert denied_prefix("/etc/passwords/app") is None
        assert denied_prefix("/binaries/app") is None
        assert denied_prefix("/etc/app/token") is None


class TestSubstitute:
    def test_secret_variables_override_defaults(self):
        result = substitute("{env}/{name}", {"name": "db"}, {"env": "prod", "name": "x"})
        assert result == "prod/db"

    def test_unresolved_placeholder(self):
        with pytest.raises(ConfigurationError) as exc:
            substitute("{service}/{name}", {"name": "db"}, {})
        assert "'{service}'" in exc.value.issue
        assert any("Available variables: name" in s for s in exc.value.suggestions)

    @pytest.mark.parametrize("value", ["..", "a..b", "x;rm", "$(id)", "a|b", "`x`", "a>b"])
    def test_unsafe_values_rejected(self, value):
        with pytest.raises(ConfigurationError):
            substitute("{name}", {"name": value}, {})


class TestResolvePath:
    def test_relative_path_under_output_dir(self, tmp_path):
        result = resolve_path(_secret(path="database/password"), None, {}, tmp_path)
        assert result == tmp_path / "database" / "password"

    def test_absolute_path_kept(self, tmp_path):
        result = resolve_path(_secret(path="/etc/app/token"), None, {}, tmp_path)
        assert result == Path("/etc/app/token")

    def test_template_used_when_no_path(self, tmp_path):
        secret = _secret(variables={"service": "pg", "name": "pw"})
        result = resolve_path(secret, "{service}/{name}", {}, tmp_path)
        assert result == tmp_path / "pg" / "pw"

    def test_explicit_path_beats_template(self, tmp_path):
        secret = _secret(path="fixed")
        assert resolve_path(secret, "{missing}", {}, tmp_path) == tmp_path / "fixed"

    def test_neither_path_nor_template(self, tmp_path):
        with pytest.raises(ConfigurationError, match="No path specified"):
            resolve_path(_secret(), None, {}, tmp_path)

    def test_deterministic(self, tmp_path):
        secret = _secret(variables={"name": "pw"})
        first = resolve_path(secret, "app//{name}", {"x": "1"}, tmp_path)
        second = resolve_path(secret, "app//{name}", {"x": "1"}, tmp_path)
        assert first == second == tmp_path / "app" / "pw"

    def test_symlink_anchoring(self, tmp_path):
        assert resolve_symlink("links/db", tmp_path) == tmp_path / "links" / "db"
        assert resolve_symlink("/run/db", tmp_path) == Path("/run/db")
