import argparse
import json
import logging
import sys
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from src.api.routers import chain_config, proposals_config  # noqa: E402
from src.core.proposals import ProposalVotingService  # noqa: E402


def build_service() -> ProposalVotingService:
    registry_address = chain_config.council_registry_address()
    if not registry_address:
        raise RuntimeError("COUNCIL_REGISTRY_ADDRESS_REQUIRED")
    w3 = chain_config.build_chain_client()
    return ProposalVotingService(
        repository=proposals_config.build_repository(),
        safe_info=chain_config.build_safe_info_cache(chain_config.build_safe_reader(w3)),
        registry_address=registry_address,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Expire pending governance proposals whose voting window has closed."
    )
    parser.add_argument("--json", action="store_true", help="Emit machine-readable output.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    expired = build_service().expire_overdue_proposals()
    if args.json:
        print(json.dumps({"expired_proposal_ids": expired}))
    else:
        print(f"Expired {len(expired)} proposal(s): {', '.join(expired) or 'none'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
