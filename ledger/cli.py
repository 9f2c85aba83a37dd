"""CLI module for the donation ledger."""

import argparse
import json
import sys
from typing import Any, List, Optional

from pydantic import ValidationError

from ledger.app import Ledger
from ledger.config import Config
from ledger.db.healthcheck import check_tables_exist
from ledger.errors import CONFLICT_KINDS, LedgerError
from ledger.log import get_logger, setup_logging
from ledger.schemas import CampaignInput, DonationSubmission, ReferralBind, RegistrationRequest
from ledger.services.ipfs import ReceiptGatewayError
from ledger.utils.formatting import eth_to_wei

logger = get_logger(__name__)

EXIT_ERROR = 1
EXIT_CONFLICT = 2


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="Donation ledger with impact scores and reward tokens",
        prog="python -m ledger",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create ledger tables")
    subparsers.add_parser("check-db", help="Verify ledger tables exist")

    # register
    register = subparsers.add_parser("register", help="Register a user")
    register.add_argument("--name", required=True, help="Display name")
    register.add_argument("--email", required=True, help="Email address")
    register.add_argument("--address", help="Wallet address")
    register.add_argument("--phone", help="Phone number")
    register.add_argument("--referral-code", help="Referral code of the referring user")

    # Campaign commands
    campaign_parser = subparsers.add_parser("campaign", help="Campaign commands")
    campaign_subparsers = campaign_parser.add_subparsers(dest="subcommand", help="Campaign subcommands")

    campaign_create = campaign_subparsers.add_parser("create", help="Create a campaign")
    campaign_create.add_argument("--name", required=True, help="Campaign name")
    campaign_create.add_argument("--description", default="", help="Campaign description")
    campaign_create.add_argument("--goal-eth", default="0", help="Goal in ETH (decimal string)")
    campaign_create.add_argument("--owner", help="Owner wallet address or email")
    campaign_create.add_argument("--beneficiary", help="Beneficiary (defaults to owner)")
    campaign_create.add_argument("--category", help="Category (defaults to General)")
    campaign_create.add_argument("--verified", action="store_true", help="Mark as verified")
    campaign_create.add_argument("--cover-cid", help="Cover image CID")

    campaign_subparsers.add_parser("list", help="List campaigns with totals")

    campaign_show = campaign_subparsers.add_parser("show", help="Show one campaign")
    campaign_show.add_argument("campaign_id", type=int, help="Campaign ID")

    campaign_top = campaign_subparsers.add_parser("top", help="Campaigns with the most raised")
    campaign_top.add_argument("--limit", type=_non_negative_int, default=3, help="Number of campaigns")

    campaign_subparsers.add_parser("backfill-beneficiaries", help="Default missing beneficiaries to owners")

    # donate
    donate = subparsers.add_parser("donate", help="Record a donation")
    donate.add_argument("--tx-hash", required=True, help="Transaction hash")
    donate.add_argument("--donor", required=True, help="Donor wallet address or email")
    donate.add_argument("--campaign-id", type=int, required=True, help="Campaign ID")
    donate.add_argument("--amount-wei", required=True, help="Amount in wei")
    donate.add_argument("--cid", required=True, help="Receipt CID")
    donate.add_argument("--size-bytes", type=int, help="Receipt size in bytes")
    donate.add_argument("--gateway-url", help="Receipt gateway URL")

    donation_show = subparsers.add_parser("donation", help="Show a recorded donation")
    donation_show.add_argument("tx_hash", help="Transaction hash")

    # Stats
    stats = subparsers.add_parser("stats", help="Show impact stats for a user")
    stats.add_argument("identity", help="Wallet address or email")

    dashboard = subparsers.add_parser("dashboard", help="Show donation totals for a donor")
    dashboard.add_argument("identity", help="Wallet address or email")

    subparsers.add_parser("platform", help="Show platform-wide totals")

    rewards = subparsers.add_parser("rewards", help="Show reward history for a user")
    rewards.add_argument("identity", help="Wallet address or email")
    rewards.add_argument("--limit", type=_non_negative_int, default=50, help="Maximum entries")

    # Referral commands
    referral_parser = subparsers.add_parser("referral", help="Referral commands")
    referral_subparsers = referral_parser.add_subparsers(dest="subcommand", help="Referral subcommands")

    referral_code = referral_subparsers.add_parser("code", help="Get or create a referral code")
    referral_code.add_argument("identity", help="Wallet address or email")

    referral_bind = referral_subparsers.add_parser("bind", help="Bind a referrer to a user")
    referral_bind.add_argument("identity", help="Wallet address or email of the referred user")
    referral_bind.add_argument("code", help="Referral code")

    referral_stats = referral_subparsers.add_parser("stats", help="Show referral stats")
    referral_stats.add_argument("identity", help="Wallet address or email")

    # Receipt commands
    receipt_parser = subparsers.add_parser("receipt", help="Receipt commands")
    receipt_subparsers = receipt_parser.add_subparsers(dest="subcommand", help="Receipt subcommands")

    receipt_url = receipt_subparsers.add_parser("url", help="Print the gateway URL for a CID")
    receipt_url.add_argument("cid", help="Receipt CID")

    receipt_fetch = receipt_subparsers.add_parser("fetch", help="Fetch a JSON receipt from the gateway")
    receipt_fetch.add_argument("cid", help="Receipt CID")

    return parser


def run_command(ledger: Ledger, args: argparse.Namespace) -> int:
    """Dispatch one parsed command against the ledger.

    Returns:
        Process exit code
    """
    if args.command == "init-db":
        ledger.store.create_tables()
        print("Ledger tables created")

    elif args.command == "check-db":
        check_tables_exist(ledger.store)
        print("All required tables exist")

    elif args.command == "register":
        registration = RegistrationRequest(
            name=args.name,
            email=args.email,
            address=args.address,
            phone=args.phone,
            referral_code=args.referral_code,
        )
        _print_json(ledger.users.register(registration))

    elif args.command == "campaign":
        if not args.subcommand:
            print("Usage: python -m ledger campaign {create|list|show|top|backfill-beneficiaries}")
            return EXIT_ERROR

        if args.subcommand == "create":
            data = CampaignInput(
                name=args.name,
                description=args.description,
                goal_wei=eth_to_wei(args.goal_eth),
                owner=args.owner,
                beneficiary=args.beneficiary,
                category=args.category,
                verified=args.verified,
                cover_image_cid=args.cover_cid,
            )
            _print_json(ledger.campaigns.create_campaign(data).to_dict())
        elif args.subcommand == "list":
            _print_json([s.to_dict() for s in ledger.campaigns.list_summaries()])
        elif args.subcommand == "show":
            _print_json(ledger.campaigns.get_summary(args.campaign_id).to_dict())
        elif args.subcommand == "top":
            _print_json([s.to_dict() for s in ledger.campaigns.top_campaigns(args.limit)])
        elif args.subcommand == "backfill-beneficiaries":
            updated = ledger.campaigns.backfill_beneficiaries()
            print(f"{len(updated)} campaigns updated")

    elif args.command == "donate":
        submission = DonationSubmission(
            tx_hash=args.tx_hash,
            donor=args.donor,
            campaign_id=args.campaign_id,
            amount_wei=args.amount_wei,
            receipt_cid=args.cid,
            receipt_size_bytes=args.size_bytes,
            receipt_gateway_url=args.gateway_url,
        )
        _print_json(ledger.donations.record(submission).to_dict())

    elif args.command == "donation":
        donation = ledger.donations.get_donation(args.tx_hash)
        if donation is None:
            print(f"Donation not found: {args.tx_hash}", file=sys.stderr)
            return EXIT_ERROR
        _print_json(donation)

    elif args.command == "stats":
        _print_json(ledger.users.get_impact_stats(args.identity))

    elif args.command == "dashboard":
        _print_json(ledger.campaigns.donor_dashboard(args.identity))

    elif args.command == "platform":
        _print_json(ledger.campaigns.platform_totals())

    elif args.command == "rewards":
        _print_json(ledger.users.get_reward_history(args.identity, args.limit))

    elif args.command == "referral":
        if not args.subcommand:
            print("Usage: python -m ledger referral {code|bind|stats}")
            return EXIT_ERROR

        if args.subcommand == "code":
            print(ledger.referrals.get_or_create_code(args.identity))
        elif args.subcommand == "bind":
            bind = ReferralBind(identity=args.identity, referral_code=args.code)
            referrer = ledger.referrals.bind_referral(bind.identity, bind.referral_code)
            print(f"Referral linked successfully: referred by {referrer}")
        elif args.subcommand == "stats":
            _print_json(ledger.referrals.get_referral_stats(args.identity))

    elif args.command == "receipt":
        if not args.subcommand:
            print("Usage: python -m ledger receipt {url|fetch}")
            return EXIT_ERROR

        if args.subcommand == "url":
            print(ledger.gateway.get_gateway_url(args.cid))
        elif args.subcommand == "fetch":
            _print_json(ledger.gateway.fetch_json_sync(args.cid))

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    # Load config
    try:
        config = Config.from_env()
        config.validate()
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    # Setup logging
    setup_logging(config)

    ledger = Ledger.from_config(config)
    try:
        return run_command(ledger, args)
    except LedgerError as e:
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return EXIT_CONFLICT if e.kind in CONFLICT_KINDS else EXIT_ERROR
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except ReceiptGatewayError as e:
        print(f"Receipt gateway error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        ledger.close()


if __name__ == "__main__":
    sys.exit(main())
