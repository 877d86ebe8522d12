from __future__ import annotations

import pytest

from iplists import manage


def test_cli_create_list_add_ip_and_check(capsys):
    assert manage.main(["create-list", "Admins", "--route", "/admin", "--route", "/Security", "--priority", "200"]) == 0
    assert manage.main(["add-ip", "10.0.0.0/24", "--type", "CIDR", "--title", "Office", "--list", "1"]) == 0
    out = capsys.readouterr().out
    assert "IP list 1 created: Admins (Allow)" in out
    assert "used in 1 list (Admins)" in out

    assert manage.main(["check", "--ip", "10.0.0.7", "--path", "/admin/ip-lists"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("allowed: 10.0.0.7 -> /admin/ip-lists via list 1 (Admins), rule 1 (10.0.0.0/24)")

    assert manage.main(["check", "--ip", "192.0.2.1", "--path", "/Security/login"]) == 1
    out = capsys.readouterr().out
    assert "denied: 192.0.2.1 -> /Security/login via list 1 (Admins)" in out
    assert "denial: HTTP 404 (not_found)" in out

    assert manage.main(["check", "--ip", "192.0.2.1", "--path", "/"]) == 0
    assert "default allow" in capsys.readouterr().out


def test_cli_listing(capsys):
    manage.main(["create-list", "Blocked", "--route", "/api", "--type", "Deny", "--deny-method", "400"])
    manage.main(["add-ip", "198.51.100.7", "--list", "1"])
    capsys.readouterr()

    manage.main(["list-lists"])
    out = capsys.readouterr().out
    assert "Blocked" in out
    assert "Deny" in out
    assert "/api" in out

    manage.main(["list-ips"])
    out = capsys.readouterr().out
    assert "198.51.100.7" in out
    assert "1 list (Blocked)" in out


def test_cli_delete_commands(capsys):
    manage.main(["create-list", "A", "--route", "/a"])
    manage.main(["add-ip", "10.0.0.1", "--list", "1"])

    assert manage.main(["remove-ip", "1", "1"]) == 0
    assert manage.main(["delete-ip", "1"]) == 0
    assert manage.main(["delete-list", "1"]) == 0
    capsys.readouterr()

    manage.main(["list-lists"])
    assert "No IP lists found." in capsys.readouterr().out


def test_cli_reports_validation_errors():
    with pytest.raises(SystemExit) as excinfo:
        manage.main(["add-ip", "not-an-ip"])
    assert "value_invalid" in str(excinfo.value)


def test_cli_add_ip_with_unknown_list_keeps_nothing(capsys):
    with pytest.raises(SystemExit) as excinfo:
        manage.main(["add-ip", "10.0.0.1", "--list", "999"])
    assert "list_not_found" in str(excinfo.value)

    manage.main(["list-ips"])
    assert "No IP rules found." in capsys.readouterr().out
