"""Tests for missing transitive dependency detection and trimming."""

import pytest

from converter.graph import DependencyGraphNode, detect_missing_dependencies, package_nodes, trim_packages
from converter.package_info import PackageInfoCache
from converter.usage import PackageUsage
from versioning import PackageIdentity, parse_range, parse_version


def identity(package_id, version="1.0.0"):
    """Helper to build identities."""
    return PackageIdentity(package_id, parse_version(version))


def node(package_id, *deps, version="1.0.0", is_package=True):
    """Graph node depending on other ids at 1.0.0."""
    return DependencyGraphNode(
        identity=identity(package_id, version),
        dependencies=frozenset(identity(d) for d in deps),
        is_package=is_package,
    )


@pytest.fixture
def cache(layout):
    """PackageInfo cache over the fixture folders."""
    return PackageInfoCache(layout.repository_path, layout.global_folder)


def usages_for(cache, *ids):
    """Usages for packages that need not be installed."""
    return [PackageUsage(info=cache.get(identity(i), require_installed=False)) for i in ids]


class TestDetectMissing:
    """Test missing transitive detection."""

    def test_missing_package_is_added(self, cache):
        """Test a graph package absent from the manifest becomes a usage."""
        usages = usages_for(cache, "A")
        graph = [node("A", "C"), node("C")]
        augmented, warnings = detect_missing_dependencies(usages, graph, cache, "App.csproj")
        assert [u.package_id for u in augmented] == ["A", "C"]
        assert augmented[1].is_missing_transitive_dependency
        assert len(warnings) == 1
        assert warnings[0].package_id == "C"
        assert "C 1.0.0" in warnings[0].message
        assert str(warnings[0]).startswith("App.csproj: ")

    def test_declared_ids_are_case_insensitive(self, cache):
        """Test a differently cased declared id is not missing."""
        usages = usages_for(cache, "a")
        augmented, warnings = detect_missing_dependencies(usages, [node("A")], cache, "p")
        assert len(augmented) == 1
        assert warnings == []

    def test_other_version_of_declared_id_is_not_missing(self, cache):
        """Test a node with a declared id but another version is ignored."""
        usages = usages_for(cache, "A")
        augmented, _ = detect_missing_dependencies(usages, [node("A", version="2.0.0")], cache, "p")
        assert len(augmented) == 1

    def test_project_nodes_are_ignored(self, cache):
        """Test non-package nodes never become usages."""
        graph = [node("A"), node("Other.Project", is_package=False)]
        augmented, _ = detect_missing_dependencies(usages_for(cache, "A"), graph, cache, "p")
        assert [u.package_id for u in augmented] == ["A"]
        assert len(package_nodes(graph)) == 1

    def test_input_is_not_mutated(self, cache):
        """Test the original usage list is left untouched."""
        usages = usages_for(cache, "A")
        detect_missing_dependencies(usages, [node("A"), node("B")], cache, "p")
        assert len(usages) == 1


class TestTrim:
    """Test trimming to top-level packages."""

    def test_dependency_is_trimmed(self, cache):
        """Test B, a dependency of A, is removed with one warning."""
        usages = usages_for(cache, "A", "B")
        retained, warnings = trim_packages(usages, [node("A", "B"), node("B")], "p")
        assert [u.package_id for u in retained] == ["A"]
        assert len(warnings) == 1
        assert warnings[0].package_id == "B"
        assert "B 1.0.0" in warnings[0].message

    def test_top_level_packages_are_kept(self, cache):
        """Test packages nobody depends on stay."""
        usages = usages_for(cache, "A", "B")
        retained, warnings = trim_packages(usages, [node("A"), node("B")], "p")
        assert len(retained) == 2
        assert warnings == []

    def test_ids_compare_case_insensitively(self, cache):
        """Test a dependency id in another case still trims."""
        usages = usages_for(cache, "A", "b")
        retained, _ = trim_packages(usages, [node("A", "B"), node("B")], "p")
        assert [u.package_id for u in retained] == ["A"]

    def test_chain(self, cache):
        """Test only the root of A -> B -> C remains."""
        usages = usages_for(cache, "A", "B", "C")
        retained, warnings = trim_packages(usages, [node("A", "B"), node("B", "C"), node("C")], "p")
        assert [u.package_id for u in retained] == ["A"]
        assert len(warnings) == 2

    def test_warning_names_allowed_versions(self, cache):
        """Test the trim warning shows the allowedVersions of the removed package."""
        usages = usages_for(cache, "A", "B")
        usages[1].allowed_versions = parse_range("[1.0,2.0)")
        _, warnings = trim_packages(usages, [node("A", "B"), node("B")], "p")
        assert "B 1.0.0 AllowedVersions [1.0.0, 2.0.0)" in warnings[0].message
