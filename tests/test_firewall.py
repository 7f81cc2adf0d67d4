"""Tests for oneserver.hardening.firewall — FirewallConfigurator."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from oneserver.core.config_mutator import SafeConfigMutator
from oneserver.core.errors import FatalActionError
from oneserver.hardening.firewall import FirewallConfigurator, parse_ports

ACTIVE = "Status: active\n\nTo   Action  From\n--   ------  ----\n22/tcp  ALLOW  Anywhere\n"


@pytest.fixture
def ufw_defaults(tmp_path):
    path = tmp_path / "ufw"
    path.write_text('IPV6=yes\nDEFAULT_INPUT_POLICY="DROP"\nDEFAULT_FORWARD_POLICY="DROP"\n')
    return path


@pytest.fixture
def firewall(executor, session_log, prompter, ufw_defaults):
    return FirewallConfigurator(
        executor, SafeConfigMutator(session_log), prompter, ufw_defaults=ufw_defaults
    )


@pytest.fixture
def ufw_installed():
    with patch("oneserver.hardening.firewall.shutil.which", return_value="/usr/sbin/ufw") as m:
        yield m


class TestParsePorts:
    def test_valid_and_rejected(self):
        assert parse_ports("8080 3000 abc 70000 0 5432") == ([8080, 3000, 5432], ["abc", "70000", "0"])

    def test_empty(self):
        assert parse_ports("   ") == ([], [])


class TestCollectPorts:
    def test_defaults_plus_extras_sorted_unique(self, firewall, prompter):
        prompter.ask.return_value = "8080 443 x"
        assert firewall.collect_ports(2222) == [80, 443, 2222, 8080]

    def test_invalid_entries_warned(self, firewall, prompter, session_log):
        prompter.ask.return_value = "http"
        firewall.collect_ports(22)
        assert "'http' is not a valid port, skipped." in session_log.log_file.read_text()


# ---------------------------------------------------------------------------
# configure
# ---------------------------------------------------------------------------

class TestConfigure:
    def test_fresh_setup(self, firewall, prompter, host_commands, ufw_installed):
        host_commands.on("ufw status", (0, "Status: inactive\n"))
        prompter.ask.return_value = ""
        # enable firewall
        prompter.confirm.side_effect = [True]

        assert firewall.configure(2222) == [80, 443, 2222]

        rules = [c for c in host_commands.calls if c.startswith("ufw ") and "status" not in c]
        assert rules == [
            "ufw default deny incoming",
            "ufw default allow outgoing",
            "ufw allow 80/tcp",
            "ufw allow 443/tcp",
            "ufw allow 2222/tcp",
            "ufw allow 443/udp",
            "ufw --force enable",
        ]

    def test_installs_ufw_when_missing(self, firewall, prompter, host_commands):
        prompter.ask.return_value = ""
        prompter.confirm.side_effect = [False]
        with patch("oneserver.hardening.firewall.shutil.which", return_value=None):
            firewall.configure(22)
        assert host_commands.calls[0] == "apt-get install -y -qq ufw"

    def test_active_firewall_reset_on_request(self, firewall, prompter, host_commands, ufw_defaults, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        ufw_defaults.write_text('DEFAULT_FORWARD_POLICY="ACCEPT"\n')
        prompter.ask.return_value = ""
        # reset, enable
        prompter.confirm.side_effect = [True, True]

        firewall.configure(22)

        assert host_commands.ran("ufw --force reset")
        reset = host_commands.calls.index("ufw --force reset")
        assert reset < host_commands.calls.index("ufw default deny incoming")

    def test_active_firewall_kept(self, firewall, prompter, host_commands, ufw_defaults, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        ufw_defaults.write_text('DEFAULT_FORWARD_POLICY="ACCEPT"\n')
        prompter.ask.return_value = ""
        prompter.confirm.side_effect = [False, True]
        firewall.configure(22)
        assert not host_commands.ran("ufw --force reset")

    def test_left_disabled(self, firewall, prompter, host_commands, session_log, ufw_installed):
        host_commands.on("ufw status", (0, "Status: inactive\n"))
        prompter.ask.return_value = ""
        prompter.confirm.side_effect = [False]
        firewall.configure(22)
        assert not host_commands.ran("ufw --force enable")
        assert "sudo ufw enable" in session_log.log_file.read_text()

    def test_rule_failure_is_fatal(self, firewall, prompter, host_commands, ufw_installed):
        host_commands.on("ufw status", (0, "Status: inactive\n"))
        host_commands.fail("ufw allow 80/tcp", 1, "ERROR: Could not update running firewall")
        prompter.ask.return_value = ""
        with pytest.raises(FatalActionError):
            firewall.configure(22)

    def test_status_printed(self, firewall, prompter, host_commands, session_log, ufw_installed):
        host_commands.on("ufw status", (0, "Status: inactive\n"))
        host_commands.on("ufw status verbose", (0, "Status: active\nLogging: on (low)\n"))
        prompter.ask.return_value = ""
        prompter.confirm.side_effect = [False]
        firewall.configure(22)
        assert "Logging: on (low)" in session_log.console.file.getvalue()


# ---------------------------------------------------------------------------
# Forwarding
# ---------------------------------------------------------------------------

class TestForwarding:
    def test_accept_applied_and_reloaded(self, firewall, prompter, host_commands, ufw_defaults, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        prompter.confirm.side_effect = [True]

        assert firewall.configure_forwarding() is True

        assert ufw_defaults.read_text() == (
            'IPV6=yes\nDEFAULT_INPUT_POLICY="DROP"\nDEFAULT_FORWARD_POLICY="ACCEPT"\n'
        )
        assert host_commands.ran("ufw reload")
        prompter.confirm.assert_called_once_with('Set DEFAULT_FORWARD_POLICY="ACCEPT"?', default=False)

    def test_already_accept(self, firewall, prompter, host_commands, ufw_defaults, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        ufw_defaults.write_text('DEFAULT_FORWARD_POLICY="ACCEPT"\n')
        assert firewall.configure_forwarding() is False
        prompter.confirm.assert_not_called()

    def test_declined(self, firewall, prompter, host_commands, ufw_defaults, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        before = ufw_defaults.read_text()
        prompter.confirm.side_effect = [False]
        assert firewall.configure_forwarding() is False
        assert ufw_defaults.read_text() == before

    def test_inactive_skipped(self, firewall, prompter, host_commands, ufw_installed):
        host_commands.on("ufw status", (0, "Status: inactive\n"))
        assert firewall.configure_forwarding() is False
        prompter.confirm.assert_not_called()

    def test_not_installed_skipped(self, firewall, prompter, host_commands):
        with patch("oneserver.hardening.firewall.shutil.which", return_value=None):
            assert firewall.configure_forwarding() is False
        assert host_commands.calls == []

    def test_reload_failure_tolerated(self, firewall, prompter, host_commands, session_log, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        host_commands.fail("ufw reload", 1)
        prompter.confirm.side_effect = [True]
        assert firewall.configure_forwarding() is True
        assert "sudo ufw reload" in session_log.log_file.read_text()

    def test_missing_key_appended(self, firewall, prompter, host_commands, ufw_defaults, ufw_installed):
        host_commands.on("ufw status", (0, ACTIVE))
        ufw_defaults.write_text("IPV6=yes\n")
        prompter.confirm.side_effect = [True]
        firewall.configure_forwarding()
        assert ufw_defaults.read_text() == 'IPV6=yes\nDEFAULT_FORWARD_POLICY="ACCEPT"\n'
