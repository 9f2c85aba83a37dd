"""Tests for the command line interface."""

import json

import pytest

from ledger.cli import EXIT_CONFLICT, EXIT_ERROR, main

ALICE = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
BOB = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
TX = "0xdead000000000000000000000000000000000000000000000000000000000001"


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a throwaway SQLite file and create the schema."""
    monkeypatch.setenv("DB_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    monkeypatch.setenv("IPFS_GATEWAY_URL", "https://gateway.test/ipfs/")
    monkeypatch.delenv("LEDGER_APPLY_BONUS", raising=False)
    assert main(["init-db"]) == 0
    return monkeypatch


def _run_json(capsys, argv):
    capsys.readouterr()
    code = main(argv)
    out = capsys.readouterr().out
    assert code == 0, out
    return json.loads(out)


def _seed(capsys):
    """Register Alice, Bob and one campaign; return the campaign id."""
    _run_json(capsys, ["register", "--name", "Alice", "--email", "alice@example.com", "--address", ALICE])
    _run_json(capsys, ["register", "--name", "Bob", "--email", "bob@example.com", "--address", BOB])
    campaign = _run_json(
        capsys,
        ["campaign", "create", "--name", "Clean Water", "--goal-eth", "10", "--owner", ALICE],
    )
    return campaign["id"]


def test_no_command_prints_help(capsys):
    assert main([]) == EXIT_ERROR


def test_missing_db_url(monkeypatch, capsys):
    monkeypatch.delenv("DB_URL", raising=False)

    assert main(["platform"]) == EXIT_ERROR
    assert "Configuration error" in capsys.readouterr().err


def test_check_db(cli_env, capsys):
    assert main(["check-db"]) == 0
    assert "All required tables exist" in capsys.readouterr().out


def test_donation_flow(cli_env, capsys):
    campaign_id = _seed(capsys)

    result = _run_json(
        capsys,
        [
            "donate",
            "--tx-hash", TX,
            "--donor", ALICE,
            "--campaign-id", str(campaign_id),
            "--amount-wei", str(5 * 10**18),
            "--cid", "bafyreceipt001",
        ],
    )
    assert result["status"] == "Success"
    assert result["impact"]["impact_score"] == "50"
    assert result["impact"]["tokens_awarded"] == "500"

    stats = _run_json(capsys, ["stats", ALICE])
    assert stats["total_donated_eth"] == "5"
    assert stats["reward_balance"] == "500"

    summary = _run_json(capsys, ["campaign", "show", str(campaign_id)])
    assert summary["raised_eth"] == "5.000"
    assert summary["progress_percent"] == "50.00"

    donation = _run_json(capsys, ["donation", TX])
    assert donation["receipt_cid"] == "bafyreceipt001"

    history = _run_json(capsys, ["rewards", ALICE])
    assert history[0]["token_amount"] == "500"

    platform = _run_json(capsys, ["platform"])
    assert platform["unique_donors"] == 1


def test_duplicate_donation_exit_code(cli_env, capsys):
    campaign_id = _seed(capsys)
    argv = [
        "donate",
        "--tx-hash", TX,
        "--donor", ALICE,
        "--campaign-id", str(campaign_id),
        "--amount-wei", "1000",
        "--cid", "bafyreceipt001",
    ]
    assert main(argv) == 0
    capsys.readouterr()

    assert main(argv) == EXIT_CONFLICT
    assert capsys.readouterr().err.startswith("duplicate_donation:")


def test_float_amount_rejected(cli_env, capsys):
    campaign_id = _seed(capsys)

    code = main(
        [
            "donate",
            "--tx-hash", TX,
            "--donor", ALICE,
            "--campaign-id", str(campaign_id),
            "--amount-wei", "1.5",
            "--cid", "bafyreceipt001",
        ]
    )

    assert code == EXIT_ERROR
    assert "Validation error" in capsys.readouterr().err


def test_referral_commands(cli_env, capsys):
    _seed(capsys)

    main(["referral", "code", ALICE])
    code = capsys.readouterr().out.strip()
    assert len(code) == 6

    assert main(["referral", "bind", BOB, code.lower()]) == 0
    assert ALICE in capsys.readouterr().out

    stats = _run_json(capsys, ["referral", "stats", ALICE])
    assert stats["referral_count"] == 1

    assert main(["referral", "bind", BOB, code]) == EXIT_CONFLICT
    assert capsys.readouterr().err.startswith("already_referred:")


def test_invalid_referral_code_exit_code(cli_env, capsys):
    _seed(capsys)

    assert main(["referral", "bind", BOB, "NOPE99"]) == EXIT_ERROR
    assert capsys.readouterr().err.startswith("invalid_referral_code:")


def test_unknown_user_stats(cli_env, capsys):
    assert main(["stats", "nobody@example.com"]) == EXIT_ERROR
    assert capsys.readouterr().err.startswith("user_not_found:")


def test_receipt_url(cli_env, capsys):
    capsys.readouterr()
    assert main(["receipt", "url", "ipfs://bafyreceipt001"]) == 0
    assert capsys.readouterr().out.strip() == "https://gateway.test/ipfs/bafyreceipt001"


def test_backfill_beneficiaries(cli_env, capsys):
    _seed(capsys)

    assert main(["campaign", "backfill-beneficiaries"]) == 0
    assert "0 campaigns updated" in capsys.readouterr().out


def test_stats_by_email_for_wallet_user(cli_env, capsys):
    _seed(capsys)

    stats = _run_json(capsys, ["stats", "alice@example.com"])
    assert stats["identity"] == ALICE


def test_negative_limit_rejected(cli_env):
    with pytest.raises(SystemExit) as exc_info:
        main(["campaign", "top", "--limit", "-1"])
    assert exc_info.value.code == 2
