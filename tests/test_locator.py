"""Tests for native package discovery."""

import os

import pytest
from conftest import make_cellar
from opuslink._internals import locator
from opuslink._internals.directives import Directive
from opuslink._internals.errors import DiscoveryError
from opuslink._internals.locator import (
    CellarStrategy,
    PackageConfigStrategy,
    PinnedStrategy,
    find_package,
    installed_versions,
    select_strategy,
)


class TestSelectStrategy:
    def test_pkg_config_on_linux_when_enabled(self, make_config, vcpkg_root):
        config = make_config("linux", "x86_64", use_pkg_config=True, vcpkg_root=vcpkg_root)
        assert isinstance(select_strategy(config), PackageConfigStrategy)

    def test_pkg_config_ignored_off_linux(self, make_config, vcpkg_root):
        config = make_config("windows", "x86_64", use_pkg_config=True, vcpkg_root=vcpkg_root)
        assert isinstance(select_strategy(config), PinnedStrategy)

    def test_vcpkg_on_linux_without_pkg_config(self, make_config, vcpkg_root):
        config = make_config("linux", "x86_64", vcpkg_root=vcpkg_root)
        assert isinstance(select_strategy(config), PinnedStrategy)

    def test_cellar_without_vcpkg_root(self, make_config):
        config = make_config("macos", "aarch64")
        assert isinstance(select_strategy(config), CellarStrategy)

    def test_no_applicable_strategy(self, make_config):
        config = make_config("macos", "aarch64")
        with pytest.raises(DiscoveryError):
            select_strategy(config, strategies=(PinnedStrategy(),))

    def test_selected_failure_does_not_fall_back(self, make_config, monkeypatch):
        monkeypatch.setattr(locator.pkgconfig, "exists", lambda name: False)
        config = make_config("linux", "x86_64", use_pkg_config=True, vcpkg_root="/vcpkg")
        with pytest.raises(DiscoveryError):
            find_package("opus", config)


class TestPackageConfigStrategy:
    def test_missing_package_names_dev_package(self, make_config, monkeypatch):
        monkeypatch.setattr(locator.pkgconfig, "exists", lambda name: False)
        config = make_config("linux", "x86_64", use_pkg_config=True)
        with pytest.raises(DiscoveryError) as excinfo:
            PackageConfigStrategy().locate("opus", config)
        assert excinfo.value.hint == "try installing 'opus-dev' from your system package manager"
        assert "opus-dev" in str(excinfo.value)

    def test_pkg_config_not_installed(self, make_config, monkeypatch):
        def exists(name):
            raise EnvironmentError("pkg-config probably not installed")
        monkeypatch.setattr(locator.pkgconfig, "exists", exists)
        config = make_config("linux", "x86_64", use_pkg_config=True)
        with pytest.raises(DiscoveryError, match="pkg-config"):
            PackageConfigStrategy().locate("opus", config)

    def test_returns_declared_include_dirs(self, make_config, monkeypatch):
        monkeypatch.setattr(locator.pkgconfig, "exists", lambda name: True)
        monkeypatch.setattr(locator.pkgconfig, "parse", lambda name: {
            "include_dirs": ["/usr/include/opus"],
            "library_dirs": ["/usr/lib/x86_64-linux-gnu"],
            "libraries": ["opus"],
        })
        config = make_config("linux", "x86_64", use_pkg_config=True)
        located = PackageConfigStrategy().locate("opus", config)

        assert [str(p) for p in located.include_dirs] == ["/usr/include/opus"]
        assert located.strategy == "pkg-config"
        assert located.package.link_library == "opus"
        assert Directive("link-lib", "dylib=opus") in located.directives
        assert Directive("link-search", "/usr/lib/x86_64-linux-gnu") in located.directives
        # No static or include announcements from the registry query
        assert all(not d.value.startswith("static=") for d in located.directives)
        assert all(d.kind != "include" for d in located.directives)


class TestPinnedStrategy:
    def test_layout(self, make_config, vcpkg_root):
        config = make_config("macos", "x86_64", vcpkg_root=vcpkg_root)
        located = PinnedStrategy().locate("opus", config)

        prefix = vcpkg_root / "installed" / "x64-osx"
        assert located.include_dirs == [prefix / "include"]
        assert located.package.link_search_dir == prefix / "lib"
        assert located.directives == [
            Directive("info", "x64-osx"),
            Directive("link-lib", "static=opus"),
            Directive("link-search", str(prefix / "lib")),
            Directive("include", str(prefix / "include")),
        ]

    def test_strips_lib_prefix(self, make_config, vcpkg_root):
        config = make_config("windows", "x86_64", vcpkg_root=vcpkg_root)
        located = PinnedStrategy().locate("libopus", config)
        assert Directive("link-lib", "static=opus") in located.directives
        assert located.package.link_library == "opus"
        assert located.include_dirs == [
            vcpkg_root / "installed" / "x64-windows-static" / "include"
        ]

    def test_generic_triple(self, make_config, vcpkg_root):
        config = make_config("linux", "x86_64", vcpkg_root=vcpkg_root)
        located = PinnedStrategy().locate("opus", config)
        assert located.include_dirs == [vcpkg_root / "installed" / "x86_64-linux" / "include"]


class TestCellarStrategy:
    def test_selects_greatest_version(self, make_config, tmp_path):
        package = make_cellar(tmp_path / "Cellar", "opus", ["1.2.0", "1.3.1"])
        config = make_config("macos", "aarch64")
        located = CellarStrategy().locate("opus", config)

        assert located.include_dirs == [package / "1.3.1" / "include"]
        assert located.directives == [
            Directive("link-lib", "static=opus"),
            Directive("link-search", str(package / "1.3.1" / "lib")),
            Directive("include", str(package / "1.3.1" / "include")),
        ]

    def test_version_order_is_lexicographic(self, make_config, tmp_path):
        package = make_cellar(tmp_path / "Cellar", "opus", ["1.10.0", "1.9.0"])
        config = make_config("macos", "aarch64")
        located = CellarStrategy().locate("opus", config)
        assert located.include_dirs == [package / "1.9.0" / "include"]

    def test_ignores_plain_files(self, make_config, tmp_path):
        package = make_cellar(tmp_path / "Cellar", "opus", ["1.4"])
        (package / "zz-notes.txt").write_text("not a version")
        config = make_config("macos", "aarch64")
        located = CellarStrategy().locate("opus", config)
        assert located.include_dirs == [package / "1.4" / "include"]

    def test_no_versions_is_fatal(self, make_config, tmp_path):
        make_cellar(tmp_path / "Cellar", "opus", [])
        config = make_config("macos", "aarch64")
        with pytest.raises(DiscoveryError, match="no installed version"):
            CellarStrategy().locate("opus", config)

    def test_missing_package_is_fatal(self, make_config):
        config = make_config("macos", "aarch64")
        with pytest.raises(DiscoveryError, match="could not find package"):
            CellarStrategy().locate("opus", config)

    @pytest.mark.parametrize("os_name,arch", [
        ("macos", "x86_64"),
        ("linux", "aarch64"),
        ("windows", "x86_64"),
    ])
    def test_only_for_apple_silicon(self, make_config, tmp_path, os_name, arch):
        make_cellar(tmp_path / "Cellar", "opus", ["1.4"])
        config = make_config(os_name, arch)
        with pytest.raises(DiscoveryError) as excinfo:
            CellarStrategy().locate("opus", config)
        assert "VCPKG_ROOT" in excinfo.value.hint


class TestInstalledVersions:
    def test_missing_root(self, tmp_path):
        assert installed_versions(tmp_path / "nope") is None

    def test_sorted_oldest_first(self, tmp_path):
        package = make_cellar(tmp_path, "opus", ["1.3.1", "1.2.0", "1.3"])
        names = [p.name for p in installed_versions(package)]
        assert names == ["1.2.0", "1.3", "1.3.1"]

    @pytest.mark.skipif(os.name != "posix", reason="symlinks")
    def test_broken_symlink_is_skipped(self, tmp_path):
        package = make_cellar(tmp_path, "opus", ["1.3.1"])
        (package / "9.9.9").symlink_to(tmp_path / "missing")
        names = [p.name for p in installed_versions(package)]
        assert names == ["1.3.1"]
