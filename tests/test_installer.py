"""Tests for oneserver.core.installer — StagedInstaller with the APT backend."""

from __future__ import annotations

import pytest

from oneserver.core.errors import FatalActionError, UnitUnavailableError
from oneserver.core.installer import InstallBackend, StagedInstaller
from oneserver.core.models import InstallResult, InstallUnit, UnitKind
from oneserver.runtimes.apt import AptBackend

CORE = InstallUnit("php8.3-fpm", UnitKind.CORE, service="php8.3-fpm")
EXT_A = InstallUnit("php8.3-intl", UnitKind.EXTENSION, optional=True)
EXT_B = InstallUnit("php8.3-imagick", UnitKind.EXTENSION, optional=True)
EXT_C = InstallUnit("php8.3-zip", UnitKind.EXTENSION, optional=True)

SEARCH_OUTPUT = "\n".join([
    "php8.3-fpm - server-side, HTML-embedded scripting language (FPM-CGI binary)",
    "php8.3-intl - Internationalisation module for PHP",
    "php8.3-imagick - Provides a wrapper to the ImageMagick library",
    "php8.3-zip - Zip module for PHP",
]) + "\n"

MINIMAL = "apt-get install -y -qq --no-install-recommends "
STANDARD = "apt-get install -y -qq "


def _installer(executor) -> StagedInstaller:
    return StagedInstaller(executor, AptBackend(executor, "^php8.3-"))


def _fail_everywhere(host_commands, identifier):
    host_commands.fail(MINIMAL + identifier, 100, "E: Unable to satisfy dependencies")
    host_commands.fail(STANDARD + identifier, 100, "E: Unable to satisfy dependencies")


@pytest.fixture
def apt(host_commands):
    host_commands.on("apt-cache search", (0, SEARCH_OUTPUT))
    return host_commands


# ---------------------------------------------------------------------------
# Partial-failure tolerance
# ---------------------------------------------------------------------------

class TestPartialTolerance:
    def test_one_failed_extension_does_not_stop_the_batch(self, executor, apt):
        _fail_everywhere(apt, "php8.3-imagick")

        outcomes = _installer(executor).install([CORE, EXT_A, EXT_B, EXT_C])

        assert [(o.unit, o.result) for o in outcomes] == [
            (CORE, InstallResult.INSTALLED),
            (EXT_A, InstallResult.INSTALLED),
            (EXT_B, InstallResult.FAILED),
            (EXT_C, InstallResult.INSTALLED),
        ]
        # zip was attempted after imagick failed
        assert apt.ran(MINIMAL + "php8.3-zip")
        assert apt.ran("systemctl restart php8.3-fpm")

    def test_failed_extension_tried_on_every_rung(self, executor, apt):
        _fail_everywhere(apt, "php8.3-imagick")

        outcomes = _installer(executor).install([CORE, EXT_B])

        failed = outcomes[1]
        assert [r.name for r in failed.attempts] == [
            "Install extension php8.3-imagick (attempt 1: minimal)",
            "Install extension php8.3-imagick (attempt 2: standard)",
            "Install extension php8.3-imagick (attempt 3: after repair)",
        ]
        calls = apt.calls
        repair_index = max(i for i, c in enumerate(calls) if c == "apt-get -f install -y -qq")
        third_attempt = max(i for i, c in enumerate(calls) if c == STANDARD + "php8.3-imagick")
        assert repair_index < third_attempt

    def test_ladder_stops_at_first_success(self, executor, apt):
        apt.fail(MINIMAL + "php8.3-intl", 100)

        outcomes = _installer(executor).install([CORE, EXT_A])

        assert outcomes[1].result is InstallResult.INSTALLED
        assert len(outcomes[1].attempts) == 2
        assert apt.count(STANDARD + "php8.3-intl") == 1

    def test_failed_extensions_are_tolerated_failures(self, executor, session_log, apt):
        _fail_everywhere(apt, "php8.3-imagick")
        _installer(executor).install([CORE, EXT_B])
        assert all(r.allow_failure for r in session_log.failures())
        assert len(session_log.failures()) == 3

    def test_count_reported(self, executor, session_log, apt):
        _fail_everywhere(apt, "php8.3-imagick")
        _installer(executor).install([CORE, EXT_A, EXT_B, EXT_C])
        assert "Extensions installed: 2/3" in session_log.log_file.read_text()


class TestFailureReport:
    def test_diagnosis_and_hints(self, executor, session_log, apt):
        _fail_everywhere(apt, "php8.3-imagick")
        apt.on("apt-get install -s php8.3-imagick", (100, "libmagickcore-7 is not installable"))

        _installer(executor).install([CORE, EXT_B])

        text = session_log.log_file.read_text()
        assert "=== Diagnosis for php8.3-imagick ===" in text
        assert "libmagickcore-7 is not installable" in text
        assert "Possible fixes:" in text
        assert "dpkg --get-selections | grep hold" in text

    def test_no_report_when_all_installed(self, executor, session_log, apt):
        _installer(executor).install([CORE, EXT_A])
        assert not apt.ran("apt-get install -s")
        assert "Possible fixes:" not in session_log.log_file.read_text()


# ---------------------------------------------------------------------------
# Core unit
# ---------------------------------------------------------------------------

class TestCoreUnit:
    def test_minimal_success(self, executor, apt):
        outcome = _installer(executor).install([CORE])[0]
        assert outcome.result is InstallResult.INSTALLED
        assert len(outcome.attempts) == 1
        assert not apt.ran(STANDARD + "php8.3-fpm")

    def test_minimal_failure_falls_back_to_standard(self, executor, session_log, apt):
        apt.fail(MINIMAL + "php8.3-fpm", 100)
        outcome = _installer(executor).install([CORE])[0]
        assert outcome.result is InstallResult.INSTALLED
        assert [r.succeeded for r in outcome.attempts] == [False, True]
        assert "retrying in standard mode" in session_log.log_file.read_text()

    def test_core_failure_is_fatal(self, executor, apt):
        _fail_everywhere(apt, "php8.3-fpm")
        with pytest.raises(FatalActionError) as excinfo:
            _installer(executor).install([CORE, EXT_A])
        assert excinfo.value.exit_code == 100
        # nothing after the core is attempted
        assert not apt.ran(MINIMAL + "php8.3-intl")

    def test_unavailable_core_raises(self, executor, host_commands):
        host_commands.on("apt-cache search", (0, "php8.3-intl - intl\n"))
        with pytest.raises(UnitUnavailableError) as excinfo:
            _installer(executor).install([CORE])
        assert excinfo.value.identifier == "php8.3-fpm"
        assert not host_commands.ran("apt-get install")

    def test_service_restart_failure_is_fatal(self, executor, apt):
        apt.fail("systemctl is-active --quiet php8.3-fpm", 3)
        with pytest.raises(FatalActionError):
            _installer(executor).install([CORE])

    def test_service_checked_and_enabled(self, executor, apt):
        _installer(executor).install([CORE])
        assert apt.ran("systemctl is-active --quiet php8.3-fpm")
        assert apt.ran("systemctl enable php8.3-fpm")

    def test_exactly_one_core_required(self, executor, apt):
        other = InstallUnit("php8.2-fpm", UnitKind.CORE)
        with pytest.raises(ValueError):
            _installer(executor).install([CORE, other])
        with pytest.raises(ValueError):
            _installer(executor).install([EXT_A])


class TestExtensionAvailability:
    def test_unavailable_extension_skipped(self, executor, host_commands):
        host_commands.on("apt-cache search", (0, "php8.3-fpm - FPM\nphp8.3-intl - intl\n"))
        outcomes = _installer(executor).install([CORE, EXT_A, EXT_C])
        assert outcomes[2].result is InstallResult.SKIPPED
        assert outcomes[2].attempts == []
        assert not host_commands.ran(MINIMAL + "php8.3-zip")

    def test_availability_searched_once(self, executor, apt):
        _installer(executor).install([CORE, EXT_A, EXT_B, EXT_C])
        assert apt.count("apt-cache search") == 1


class TestPreflight:
    def test_preflight_failures_tolerated(self, executor, session_log, apt):
        apt.fail("dpkg --configure -a", 1)
        outcomes = _installer(executor).install([CORE])
        assert outcomes[0].result is InstallResult.INSTALLED
        assert session_log.failures()[0].name == "Configure unpacked packages"

    def test_preflight_runs_before_core(self, executor, apt):
        _installer(executor).install([CORE])
        assert apt.calls.index("dpkg --configure -a") < apt.calls.index(MINIMAL + "php8.3-fpm")


class TestBackendEnv:
    def test_env_defaults_are_read_only(self, executor):
        backend = AptBackend(executor, "^php8.3-")
        assert dict(backend.env) == {"DEBIAN_FRONTEND": "noninteractive"}
        with pytest.raises(TypeError):
            backend.env["FOO"] = "bar"
        with pytest.raises(TypeError):
            InstallBackend.env["FOO"] = "bar"
        assert dict(InstallBackend.env) == {}
