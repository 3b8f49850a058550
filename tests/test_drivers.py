"""Tests for process seams, the remote catalog and the driver resolver."""

from unittest.mock import MagicMock

import pytest
import requests

from indi_autodetect.config import CatalogConfig, ResolverConfig
from indi_autodetect.devices.types import DriverStatus
from indi_autodetect.drivers.catalog import (
    CORE_CATEGORIES,
    CatalogSource,
    DriverCatalog,
    cmake_driver_dirs,
    thirdparty_driver_dirs,
)
from indi_autodetect.drivers.process import (
    COMMAND_NOT_FOUND,
    AsyncCommandRunner,
    CommandResult,
    CommandRunner,
    ProcessLauncher,
    ServerProcess,
    describe_exit,
)
from indi_autodetect.drivers.resolver import DriverResolver, normalize_driver_name
from indi_autodetect.errors import CatalogError, DriverInstallError
from indi_autodetect.observability import OperationStats
from tests.fakes import (
    FakeCatalog,
    FakeCommandRunner,
    FakeLauncher,
    FakeProcess,
    make_executable,
)
from tests.helpers import assert_implements_protocol

# =============================================================================
# Process seams
# =============================================================================


class TestProcess:
    def test_fakes_implement_protocols(self):
        assert_implements_protocol(FakeCommandRunner(), CommandRunner)
        assert_implements_protocol(FakeLauncher(), ProcessLauncher)
        assert_implements_protocol(AsyncCommandRunner(), CommandRunner)
        assert_implements_protocol(FakeCatalog(), CatalogSource)

    @pytest.mark.asyncio
    async def test_fake_process_implements_protocol(self):
        assert_implements_protocol(FakeProcess(pid=1), ServerProcess)

    @pytest.mark.parametrize(
        ("returncode", "expected"),
        [
            (None, (None, None)),
            (0, (0, None)),
            (1, (1, None)),
            (-15, (None, "SIGTERM")),
            (-9, (None, "SIGKILL")),
        ],
    )
    def test_describe_exit(self, returncode, expected):
        assert describe_exit(returncode) == expected

    def test_command_result_ok(self):
        assert CommandResult(["lsusb"], 0).ok
        assert not CommandResult(["lsusb"], 1).ok

    @pytest.mark.asyncio
    async def test_missing_executable_is_127(self):
        """Verifies a missing tool is a result, not an exception.

        Arrangement:
        Real AsyncCommandRunner and an executable name that cannot exist.

        Action:
        Runs it.

        Assertion Strategy:
        Return code is 127 and the OS error text is in stderr.

        Testing Principle:
        "netstat not installed" is handled like any failed command, so
        the supervisor can fall back to ss.
        """
        result = await AsyncCommandRunner().run("indi-autodetect-no-such-tool-xyz")
        assert result.returncode == COMMAND_NOT_FOUND
        assert not result.ok
        assert result.stderr


# =============================================================================
# Catalog
# =============================================================================


class TestCatalogHelpers:
    def test_cmake_driver_dirs(self):
        tree = [
            {"path": "drivers/ccd/ccd_simulator/CMakeLists.txt", "type": "blob"},
            {"path": "drivers/telescope/lx200/CMakeLists.txt", "type": "blob"},
            {"path": "drivers/CMakeLists.txt", "type": "blob"},
            {"path": "libs/indibase/CMakeLists.txt", "type": "blob"},
            {"path": "drivers/ccd", "type": "tree"},
        ]
        assert cmake_driver_dirs(tree) == {"ccd_simulator", "lx200"}

    def test_thirdparty_driver_dirs(self):
        tree = [
            {"path": "indi-asi/CMakeLists.txt", "type": "blob"},
            {"path": "indi-asi/asi_ccd.cpp", "type": "blob"},
            {"path": "libasi/CMakeLists.txt", "type": "blob"},
            {"path": "debian/control", "type": "blob"},
            {"path": "indi-qhy", "type": "tree"},
            {"path": "README.md", "type": "blob"},
        ]
        assert thirdparty_driver_dirs(tree) == ["indi-asi", "libasi"]


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def _session(handler):
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = handler
    return session


class TestDriverCatalog:
    """Tests for DriverCatalog against a mocked requests session."""

    def test_headers_include_token(self):
        session = _session(lambda *a, **k: _response([]))
        DriverCatalog(CatalogConfig(token="secret"), session=session)
        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["User-Agent"] == "indi-autodetect"

    @pytest.mark.asyncio
    async def test_core_drivers_skip_failed_categories(self):
        """Verifies one failing category does not fail the listing.

        Arrangement:
        Session answering the ccd category with two directories and a
        file; every other category raises a connection error.

        Action:
        Calls list_core_drivers.

        Assertion Strategy:
        Only ccd is present and only directories are listed, sorted.

        Testing Principle:
        GitHub rate limits hit individual requests; partial data is
        better than none.
        """

        def handler(url, params=None, timeout=None):
            if url.endswith("/drivers/ccd"):
                return _response(
                    [
                        {"name": "ccd_simulator", "type": "dir"},
                        {"name": "CMakeLists.txt", "type": "file"},
                        {"name": "apogee", "type": "dir"},
                    ]
                )
            raise requests.ConnectionError("offline")

        catalog = DriverCatalog(session=_session(handler))
        assert await catalog.list_core_drivers() == {"ccd": ["apogee", "ccd_simulator"]}

    @pytest.mark.asyncio
    async def test_core_drivers_all_failed(self):
        def handler(url, params=None, timeout=None):
            raise requests.Timeout("slow")

        catalog = DriverCatalog(session=_session(handler))
        with pytest.raises(CatalogError):
            await catalog.list_core_drivers()

    @pytest.mark.asyncio
    async def test_driver_names_union(self):
        def handler(url, params=None, timeout=None):
            if "indi-3rdparty" in url:
                return _response(
                    {"tree": [{"path": "indi-asi/CMakeLists.txt", "type": "blob"}]}
                )
            return _response(
                {
                    "tree": [
                        {
                            "path": "drivers/ccd/ccd_simulator/CMakeLists.txt",
                            "type": "blob",
                        }
                    ]
                }
            )

        catalog = DriverCatalog(session=_session(handler))
        assert await catalog.list_driver_names() == ["ccd_simulator", "indi-asi"]

    @pytest.mark.asyncio
    async def test_malformed_tree_payload(self):
        catalog = DriverCatalog(session=_session(lambda *a, **k: _response(["x"])))
        with pytest.raises(CatalogError):
            await catalog.fetch_tree("indilib/indi")

    def test_core_categories(self):
        assert "ccd" in CORE_CATEGORIES
        assert "telescope" in CORE_CATEGORIES


# =============================================================================
# Resolver
# =============================================================================


def _resolver(dirs, runner=None, catalog=None, stats=None, use_sudo=False, ttl=3600.0):
    config = ResolverConfig(
        search_dirs=[str(d) for d in dirs], use_sudo=use_sudo, available_ttl=ttl
    )
    return DriverResolver(config, runner or FakeCommandRunner(), catalog, stats)


class TestResolvePath:
    """Tests for DriverResolver.resolve_driver_path."""

    def test_exact_name(self, bin_dir):
        path = make_executable(bin_dir, "indi_simulator_ccd")
        assert _resolver([bin_dir]).resolve_driver_path("indi_simulator_ccd") == str(path)

    def test_package_name_resolves_by_prefix(self, bin_dir):
        """Verifies a package name finds the executables it ships.

        Arrangement:
        indi_asi_wheel and indi_asi_ccd installed.

        Action:
        Resolves "indi-asi".

        Assertion Strategy:
        The first executable in sorted order (indi_asi_ccd) is returned.

        Testing Principle:
        Knowledge base entries name packages; the server needs files.
        """
        make_executable(bin_dir, "indi_asi_wheel")
        ccd = make_executable(bin_dir, "indi_asi_ccd")
        assert _resolver([bin_dir]).resolve_driver_path("indi-asi") == str(ccd)

    def test_search_order(self, tmp_path):
        first = tmp_path / "local"
        second = tmp_path / "usr"
        expected = make_executable(first, "indi_eqmod_telescope")
        make_executable(second, "indi_eqmod_telescope")
        resolver = _resolver([first, second])
        assert resolver.resolve_driver_path("indi_eqmod_telescope") == str(expected)

    def test_absolute_path(self, bin_dir):
        path = make_executable(bin_dir, "indi_simulator_ccd")
        resolver = _resolver([])
        assert resolver.resolve_driver_path(str(path)) == str(path)
        assert resolver.resolve_driver_path(str(bin_dir / "missing")) is None

    def test_non_executable_ignored(self, bin_dir):
        (bin_dir / "indi_asi_ccd").write_text("not executable")
        assert _resolver([bin_dir]).resolve_driver_path("indi_asi_ccd") is None

    def test_missing_and_blank(self, bin_dir):
        resolver = _resolver([bin_dir, bin_dir / "does-not-exist"])
        assert resolver.resolve_driver_path("indi_nothing") is None
        assert resolver.resolve_driver_path("  ") is None

    def test_installed_drivers_sorted_unique(self, tmp_path):
        first = tmp_path / "a"
        second = tmp_path / "b"
        make_executable(first, "indi_qhy_ccd")
        make_executable(first, "indi_asi_ccd")
        make_executable(second, "indi_asi_ccd")
        make_executable(second, "lsusb")
        resolver = _resolver([first, second])
        assert resolver.get_installed_drivers() == ["indi_asi_ccd", "indi_qhy_ccd"]
        assert resolver.is_installed("indi-qhy")
        assert not resolver.is_installed("indi-sbig")

    def test_normalize(self):
        assert normalize_driver_name(" indi-asi ") == "indi_asi"


class TestInstall:
    """Tests for DriverResolver.install_driver."""

    @pytest.mark.asyncio
    async def test_runs_update_then_install_with_sudo(self, bin_dir):
        runner = FakeCommandRunner()
        runner.set("sudo", "apt-get")
        stats = OperationStats()
        resolver = _resolver([bin_dir], runner, stats=stats, use_sudo=True)

        await resolver.install_driver("indi-asi")

        assert runner.calls == [
            ["sudo", "apt-get", "update"],
            ["sudo", "apt-get", "install", "-y", "indi-asi"],
        ]
        assert stats.get_summary("install").succeeded == 1

    @pytest.mark.asyncio
    async def test_failed_update_still_installs(self, bin_dir):
        runner = FakeCommandRunner()
        runner.set("apt-get", "update", returncode=100, stderr="network down")
        runner.set("apt-get", "install")
        resolver = _resolver([bin_dir], runner)

        await resolver.install_driver("indi-qhy")
        assert runner.called("apt-get", "install", "-y", "indi-qhy")

    @pytest.mark.asyncio
    async def test_install_failure(self, bin_dir):
        """Verifies a non-zero apt-get install raises DriverInstallError.

        Arrangement:
        apt-get update succeeds; install exits 100 with an error line.

        Action:
        install_driver("indi-unknown").

        Assertion Strategy:
        - Exception carries package, return code and the last stderr
          line in its message.
        - A failed "install" is recorded with the error type.

        Testing Principle:
        Setup failures are explained to the user, not swallowed.
        """
        runner = FakeCommandRunner()
        runner.set("apt-get", "update")
        runner.set(
            "apt-get",
            "install",
            returncode=100,
            stderr="Reading package lists...\nE: Unable to locate package indi-unknown\n",
        )
        stats = OperationStats()
        resolver = _resolver([bin_dir], runner, stats=stats)

        with pytest.raises(DriverInstallError) as excinfo:
            await resolver.install_driver("indi-unknown")

        assert excinfo.value.package == "indi-unknown"
        assert excinfo.value.returncode == 100
        assert "Unable to locate package" in str(excinfo.value)
        summary = stats.get_summary("install")
        assert summary.failed == 1
        assert summary.error_counts == {"DriverInstallError": 1}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("package", ["indi-asi; rm -rf /", "-y", "", "INDI ASI"])
    async def test_invalid_package_rejected(self, bin_dir, package):
        runner = FakeCommandRunner()
        resolver = _resolver([bin_dir], runner)
        with pytest.raises(ValueError):
            await resolver.install_driver(package)
        assert runner.calls == []


class TestRunningSet:
    def test_mark_and_query(self, bin_dir):
        resolver = _resolver([bin_dir])
        resolver.mark_running(["/usr/bin/indi_asi_ccd", "indi_eqmod_telescope", " "])

        assert resolver.list_running_drivers() == [
            "/usr/bin/indi_asi_ccd",
            "indi_eqmod_telescope",
        ]
        assert resolver.is_running("indi-asi")
        assert resolver.is_running("indi_eqmod_telescope")
        assert not resolver.is_running("indi-qhy")

        resolver.mark_stopped(["indi_eqmod_telescope"])
        assert not resolver.is_running("indi_eqmod_telescope")
        resolver.mark_stopped()
        assert resolver.list_running_drivers() == []


class TestAvailable:
    @pytest.mark.asyncio
    async def test_no_catalog(self, bin_dir):
        assert await _resolver([bin_dir]).get_available_drivers() == []

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, bin_dir):
        catalog = FakeCatalog(names=["indi-qhy", "indi-asi", "indi-asi"])
        resolver = _resolver([bin_dir], catalog=catalog)

        assert await resolver.get_available_drivers() == ["indi-asi", "indi-qhy"]
        await resolver.get_available_drivers()
        assert catalog.calls == 1

    @pytest.mark.asyncio
    async def test_stale_list_on_failure(self, bin_dir):
        catalog = FakeCatalog(names=["indi-asi"])
        resolver = _resolver([bin_dir], catalog=catalog, ttl=0)

        await resolver.get_available_drivers()
        catalog.fail = True
        assert await resolver.get_available_drivers() == ["indi-asi"]

    @pytest.mark.asyncio
    async def test_search_and_availability(self, bin_dir):
        catalog = FakeCatalog(names=["indi-asi", "indi-qhy", "eqmod"])
        resolver = _resolver([bin_dir], catalog=catalog)

        assert await resolver.search_drivers("ASI") == ["indi-asi"]
        assert await resolver.is_available("indi-eqmod")
        assert not await resolver.is_available("indi-sbig")


class TestDriverStatus:
    """running > installed > found > not-found."""

    @pytest.mark.asyncio
    async def test_precedence(self, bin_dir):
        make_executable(bin_dir, "indi_asi_ccd")
        resolver = _resolver([bin_dir], catalog=FakeCatalog(names=["indi-qhy"]))

        assert await resolver.driver_status("indi-asi") is DriverStatus.INSTALLED
        resolver.mark_running(["indi_asi_ccd"])
        assert await resolver.driver_status("indi-asi") is DriverStatus.RUNNING
        assert await resolver.driver_status("indi-qhy") is DriverStatus.FOUND
        assert (
            await resolver.driver_status("indi-sbig", installable=True)
            is DriverStatus.FOUND
        )
        assert await resolver.driver_status("indi-sbig") is DriverStatus.NOT_FOUND
