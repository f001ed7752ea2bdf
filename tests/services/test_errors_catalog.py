import pytest

from odoosupervisor.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("upgrade_locked", path="/var/lib/odoo/.upgrade.lock")

    assert "Another upgrade run holds the lock at /var/lib/odoo/.upgrade.lock." in message
    assert "Suggested action:" in message


def test_actionable_error_formats_placeholders_in_next_step():
    message = actionable_error("upgrade_failed", databases="a, b", run_dir="/logs/run")

    assert "Upgrade failed for: a, b." in message
    assert "/logs/run" in message


def test_actionable_error_rejects_unknown_key():
    with pytest.raises(KeyError, match="Unknown error catalog key"):
        actionable_error("nope")
