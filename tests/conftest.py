"""Shared fixtures: fake repository and global package folders."""

import os

import pytest

from common import http_client


NUSPEC_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd">
  <metadata>
    <id>{id}</id>
    <version>{version}</version>
    <dependencies>
{groups}
    </dependencies>
  </metadata>
</package>
"""

PROJECT_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<Project ToolsVersion="15.0" xmlns="http://schemas.microsoft.com/developer/msbuild/2003">
  <PropertyGroup>
    <OutputType>Library</OutputType>
    <NuGetPackageImportStamp>
    </NuGetPackageImportStamp>
  </PropertyGroup>
{body}
  <Target Name="EnsureNuGetPackageBuildImports" BeforeTargets="PrepareForBuild">
    <Error Condition="!Exists('..\\packages\\x')" Text="missing" />
  </Target>
</Project>
"""

_ASSET_FILES = {
    "lib": ("lib", "net45", "{id}.dll"),
    "build": ("build", "{id}.targets"),
    "analyzers": ("analyzers", "dotnet", "cs", "{id}.Analyzers.dll"),
}


def _touch(path, content=""):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)


class PackageLayout:
    """Writes installed packages into a repository folder and a global folder."""

    def __init__(self, root):
        self.root = str(root)
        self.repository_root = os.path.join(self.root, "repo")
        self.repository_path = os.path.join(self.repository_root, "packages")
        self.global_folder = os.path.join(self.root, "global")
        os.makedirs(self.repository_path)
        os.makedirs(self.global_folder)

    def add(self, package_id, version, folders=("lib",), dependencies=(),
            global_install=True, repository_install=True, empty_folders=()):
        """Install one package; dependencies are (id, range) pairs."""
        installs = []
        if repository_install:
            installs.append(os.path.join(self.repository_path, f"{package_id}.{version}"))
        global_path = os.path.join(self.global_folder, package_id.lower(), version.lower())
        if global_install:
            installs.append(global_path)
        for install in installs:
            os.makedirs(install, exist_ok=True)
            for folder in folders:
                parts = [p.format(id=package_id) for p in _ASSET_FILES[folder]]
                _touch(os.path.join(install, *parts), "x")
            for folder in empty_folders:
                _touch(os.path.join(install, folder, "net45", "_._"))
        if global_install:
            deps = "\n".join(
                f'        <dependency id="{dep_id}" version="{dep_range}" />'
                for dep_id, dep_range in dependencies
            )
            groups = f'      <group targetFramework=".NETFramework4.5">\n{deps}\n      </group>'
            _touch(
                os.path.join(global_path, f"{package_id.lower()}.nuspec"),
                NUSPEC_TEMPLATE.format(id=package_id, version=version, groups=groups),
            )
        return global_path

    def project(self, name="App", body="", packages=(), directory=None):
        """Write a project plus packages.config; packages are (id, version[, extra attrs])."""
        project_dir = os.path.join(self.repository_root, directory or name)
        project_path = os.path.join(project_dir, f"{name}.csproj")
        _touch(project_path, PROJECT_TEMPLATE.format(body=body))
        if packages:
            lines = []
            for entry in packages:
                package_id, version = entry[0], entry[1]
                extra = f" {entry[2]}" if len(entry) > 2 else ""
                lines.append(
                    f'  <package id="{package_id}" version="{version}" targetFramework="net45"{extra} />'
                )
            _touch(
                os.path.join(project_dir, "packages.config"),
                '<?xml version="1.0" encoding="utf-8"?>\n<packages>\n' + "\n".join(lines) + "\n</packages>\n",
            )
        return project_path


@pytest.fixture
def layout(tmp_path):
    """Empty repository and global packages folders."""
    return PackageLayout(tmp_path)


@pytest.fixture(autouse=True)
def _clear_http_cache():
    http_client.clear_cache()
    yield
    http_client.clear_cache()
