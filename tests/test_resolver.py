"""Tests for dependency resolution from nuspec metadata."""

import os
import zipfile
from unittest.mock import patch

import pytest

from converter.errors import ResolutionError
from converter.package_info import PackageInfoCache
from converter.resolver import (
    DependencyResolver,
    parse_framework,
    parse_nuspec_dependencies,
    select_dependency_group,
)
from versioning import PackageIdentity, parse_range, parse_version


def identity(package_id, version="1.0.0"):
    """Helper to build identities."""
    return PackageIdentity(package_id, parse_version(version))


def by_id(graph):
    """Graph nodes keyed by lowercased id."""
    return {n.identity.id.lower(): n for n in graph}


@pytest.fixture
def cache(layout):
    """PackageInfo cache over the fixture folders."""
    return PackageInfoCache(layout.repository_path, layout.global_folder)


class TestParseFramework:
    """Test target framework monikers."""

    @pytest.mark.parametrize("value,expected", [
        ("net45", ("net", (4, 5))),
        ("net461", ("net", (4, 6, 1))),
        ("net40", ("net", (4,))),
        (".NETFramework4.5", ("net", (4, 5))),
        (".NETFramework,Version=v4.7.2", ("net", (4, 7, 2))),
        ("netstandard2.0", ("netstandard", (2,))),
        (".NETStandard1.3", ("netstandard", (1, 3))),
        ("netcoreapp3.1", ("netcoreapp", (3, 1))),
        ("net6.0", ("netcoreapp", (6,))),
    ])
    def test_monikers(self, value, expected):
        """Test short and long framework names."""
        assert parse_framework(value) == expected

    def test_any(self):
        """Test empty and agnostic values."""
        assert parse_framework("") is None
        assert parse_framework("any") is None


class TestSelectDependencyGroup:
    """Test nearest dependency group selection."""

    GROUPS = [
        (parse_framework("net40"), [("Net40", parse_range("1.0"))]),
        (parse_framework("net45"), [("Net45", parse_range("1.0"))]),
        (parse_framework("netstandard2.0"), [("Std20", parse_range("1.0"))]),
        (None, [("Any", parse_range("1.0"))]),
    ]

    def test_highest_compatible_same_family(self):
        """Test net461 picks the net45 group."""
        deps = select_dependency_group(self.GROUPS, parse_framework("net461"))
        assert [d[0] for d in deps] == ["Net45"]

    def test_netstandard_fallback(self):
        """Test netcoreapp uses the netstandard group."""
        deps = select_dependency_group(self.GROUPS, parse_framework("netcoreapp2.1"))
        assert [d[0] for d in deps] == ["Std20"]

    def test_netstandard_from_net_framework(self):
        """Test .NET Framework 4.7.2 can use a netstandard2.0 group."""
        groups = self.GROUPS[2:]
        deps = select_dependency_group(groups, parse_framework("net472"))
        assert [d[0] for d in deps] == ["Std20"]

    def test_framework_less_group(self):
        """Test an incompatible target falls back to the framework-less group."""
        deps = select_dependency_group(self.GROUPS, parse_framework("net35"))
        assert [d[0] for d in deps] == ["Any"]

    def test_no_compatible_group(self):
        """Test no compatible group means no dependencies."""
        assert select_dependency_group(self.GROUPS[:2], parse_framework("net35")) == []


class TestParseNuspec:
    """Test nuspec dependency parsing."""

    def test_flat_dependencies(self):
        """Test dependencies without groups."""
        data = b"""<package><metadata><dependencies>
            <dependency id="B" version="[1.0, 2.0)" />
        </dependencies></metadata></package>"""
        groups = parse_nuspec_dependencies(data)
        assert groups[0][0] is None
        assert groups[0][1][0][0] == "B"
        assert groups[0][1][0][1].min_version == parse_version("1.0")

    def test_no_dependencies(self):
        """Test a nuspec without dependencies."""
        assert parse_nuspec_dependencies(b"<package><metadata /></package>") == []


class TestDependencyResolver:
    """Test graph resolution."""

    def test_transitive_closure(self, layout, cache):
        """Test dependencies are followed and resolved to their lower bound."""
        layout.add("A", "1.0.0", dependencies=[("B", "1.1.0")])
        layout.add("B", "1.1.0", dependencies=[("C", "[2.0, 3.0)")])
        layout.add("C", "2.0.0")
        graph = by_id(DependencyResolver(cache, remote_enabled=False).resolve("net45", [identity("A")]))
        assert set(graph) == {"a", "b", "c"}
        assert graph["c"].identity.version == parse_version("2.0.0")
        assert identity("B", "1.1.0") in graph["a"].dependencies
        assert graph["c"].dependencies == frozenset()

    def test_declared_version_wins(self, layout, cache):
        """Test a declared package keeps its version over a dependency's lower bound."""
        layout.add("A", "1.0.0", dependencies=[("B", "1.0.0")])
        layout.add("B", "1.5.0")
        resolver = DependencyResolver(cache, remote_enabled=False)
        graph = by_id(resolver.resolve("net45", [identity("A"), identity("B", "1.5.0")]))
        assert graph["b"].identity.version == parse_version("1.5.0")

    def test_highest_lower_bound_wins(self, layout, cache):
        """Test the highest transitive lower bound is selected."""
        layout.add("A", "1.0.0", dependencies=[("C", "1.0.0")])
        layout.add("B", "1.0.0", dependencies=[("C", "1.2.0")])
        layout.add("C", "1.0.0")
        layout.add("C", "1.2.0")
        resolver = DependencyResolver(cache, remote_enabled=False)
        graph = by_id(resolver.resolve("net45", [identity("A"), identity("B")]))
        assert graph["c"].identity.version == parse_version("1.2.0")
        assert len(graph) == 3

    def test_reads_nupkg_from_repository(self, layout, cache):
        """Test the nuspec inside a repository .nupkg is used without a global install."""
        layout.add("A", "1.0.0", global_install=False)
        layout.add("B", "1.0.0", global_install=False)
        nupkg = os.path.join(layout.repository_path, "A.1.0.0", "A.1.0.0.nupkg")
        with zipfile.ZipFile(nupkg, "w") as archive:
            archive.writestr("A.nuspec", """<package><metadata><dependencies>
                <dependency id="B" version="1.0.0" /></dependencies></metadata></package>""")
        nupkg_b = os.path.join(layout.repository_path, "B.1.0.0", "B.1.0.0.nupkg")
        with zipfile.ZipFile(nupkg_b, "w") as archive:
            archive.writestr("B.nuspec", "<package><metadata /></package>")
        graph = by_id(DependencyResolver(cache, remote_enabled=False).resolve("net45", [identity("A")]))
        assert set(graph) == {"a", "b"}

    def test_missing_metadata_offline(self, layout, cache):
        """Test resolution fails offline when no nuspec is found."""
        os.makedirs(os.path.join(layout.repository_path, "A.1.0.0"))
        with pytest.raises(ResolutionError):
            DependencyResolver(cache, remote_enabled=False).resolve("net45", [identity("A")])

    def test_unbounded_range_fails(self, layout, cache):
        """Test a dependency without lower bound cannot be resolved."""
        layout.add("A", "1.0.0", dependencies=[("B", "(, 2.0)")])
        with pytest.raises(ResolutionError):
            DependencyResolver(cache, remote_enabled=False).resolve("net45", [identity("A")])

    def test_invalid_nuspec(self, layout, cache):
        """Test a broken nuspec is reported as ResolutionError."""
        global_path = layout.add("A", "1.0.0")
        with open(os.path.join(global_path, "a.nuspec"), "w", encoding="utf-8") as fh:
            fh.write("<package")
        with pytest.raises(ResolutionError):
            DependencyResolver(cache, remote_enabled=False).resolve("net45", [identity("A")])

    @patch("converter.resolver.get_json")
    def test_remote_metadata(self, mock_get_json, layout, cache):
        """Test nuget.org registration and catalog data fill missing metadata."""
        layout.add("A", "1.0.0", dependencies=[("Remote.B", "2.0.0")])
        leaf = {"catalogEntry": "https://api.nuget.org/v3/catalog0/data/remote.b.2.0.0.json"}
        entry = {"dependencyGroups": [{"targetFramework": ".NETFramework4.5", "dependencies": []}]}
        mock_get_json.side_effect = [(200, {}, leaf), (200, {}, entry)]

        graph = by_id(DependencyResolver(cache, remote_enabled=True).resolve("net45", [identity("A")]))

        assert set(graph) == {"a", "remote.b"}
        first_url = mock_get_json.call_args_list[0][0][0]
        assert first_url.endswith("/remote.b/2.0.0.json")

    @patch("converter.resolver.get_json")
    def test_remote_not_found(self, mock_get_json, layout, cache):
        """Test a 404 from the registration is a ResolutionError."""
        layout.add("A", "1.0.0", dependencies=[("Remote.B", "2.0.0")])
        mock_get_json.return_value = (404, {}, None)
        with pytest.raises(ResolutionError):
            DependencyResolver(cache, remote_enabled=True).resolve("net45", [identity("A")])

    @patch("converter.resolver.get_json")
    def test_groups_are_cached(self, mock_get_json, layout, cache):
        """Test metadata is fetched once per identity."""
        layout.add("A", "1.0.0", dependencies=[("Remote.B", "2.0.0")])
        mock_get_json.side_effect = [(200, {}, {"catalogEntry": {"dependencyGroups": []}})]
        resolver = DependencyResolver(cache, remote_enabled=True)
        resolver.resolve("net45", [identity("A")])
        resolver.resolve("net45", [identity("A")])
        assert mock_get_json.call_count == 1

    def test_replaced_version_dependencies_dropped(self, layout, cache):
        """Test dependencies of a version replaced by a higher one leave the graph."""
        layout.add("A", "1.0.0", dependencies=[("B", "1.0.0")])
        layout.add("C", "1.0.0", dependencies=[("D", "1.0.0")])
        layout.add("D", "1.0.0", dependencies=[("B", "2.0.0")])
        layout.add("B", "1.0.0", dependencies=[("X", "1.0.0")])
        layout.add("B", "2.0.0")
        layout.add("X", "1.0.0")
        resolver = DependencyResolver(cache, remote_enabled=False)
        graph = by_id(resolver.resolve("net45", [identity("A"), identity("C")]))
        assert set(graph) == {"a", "b", "c", "d"}
        assert graph["b"].identity.version == parse_version("2.0.0")
        assert graph["b"].dependencies == frozenset()

    def test_replaced_version_missing_metadata_ignored(self, layout, cache):
        """Test missing metadata only fails resolution for packages left in the graph."""
        layout.add("A", "1.0.0", dependencies=[("B", "1.0.0")])
        layout.add("C", "1.0.0", dependencies=[("D", "1.0.0")])
        layout.add("D", "1.0.0", dependencies=[("B", "2.0.0")])
        layout.add("B", "1.0.0", dependencies=[("X", "1.0.0")])
        layout.add("B", "2.0.0")
        graph = by_id(DependencyResolver(cache, remote_enabled=False).resolve(
            "net45", [identity("A"), identity("C")]))
        assert "x" not in graph

    def test_replaced_version_lower_bound_not_kept(self, layout, cache):
        """Test a lower bound raised only by a replaced version is recomputed."""
        layout.add("A", "1.0.0", dependencies=[("B", "1.0.0"), ("Y", "1.0.0")])
        layout.add("C", "1.0.0", dependencies=[("D", "1.0.0")])
        layout.add("D", "1.0.0", dependencies=[("B", "2.0.0")])
        layout.add("B", "1.0.0", dependencies=[("Y", "3.0.0")])
        layout.add("B", "2.0.0")
        layout.add("Y", "1.0.0")
        layout.add("Y", "3.0.0")
        graph = by_id(DependencyResolver(cache, remote_enabled=False).resolve(
            "net45", [identity("A"), identity("C")]))
        assert graph["y"].identity.version == parse_version("1.0.0")
