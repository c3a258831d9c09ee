#!/usr/bin/env python3
"""
Onchain Eligibility Engine - Command line entry point

Commands:
- check <address>: evaluate airdrop eligibility across chains
- gas <chain_id>: current gas price of a chain
- chains: chains enabled by the configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from config.config_manager import ConfigManager
from core.engine import EligibilityEngine
from monitoring.logger import StructuredLogger
from utils.constants import PROJECT_NAME
from utils.errors import (
    ConfigurationError,
    GatewayError,
    PartialFailureError,
    TotalFailureError,
    ValidationError,
)

# Load environment variables
load_dotenv()

logger = logging.getLogger("EligibilityCLI")

ENV_PREFIX = "ELIGIBILITY_"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def parse_chain_ids(value: str) -> List[int]:
    """Comma separated chain ids"""
    try:
        return [int(item) for item in value.split(',') if item.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid chain list: {value}") from e


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description=PROJECT_NAME)
    parser.add_argument('--config', help='Path to a YAML configuration file')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    check = subparsers.add_parser('check', help='Evaluate eligibility of a wallet')
    check.add_argument('address', help='Wallet address (0x...)')
    check.add_argument('--chains', type=parse_chain_ids, help='Comma separated chain ids')
    check.add_argument('--strict', action='store_true',
                       help='Exit with an error when any requested chain failed')

    gas = subparsers.add_parser('gas', help='Show the current gas price of a chain')
    gas.add_argument('chain_id', type=int, help='Chain id')

    subparsers.add_parser('chains', help='List the enabled chains')

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Execute a parsed command, returning the process exit code"""
    config_manager = ConfigManager(config_path=args.config, env_prefix=ENV_PREFIX)
    try:
        await config_manager.initialize()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_INVALID

    logging_config = config_manager.get_logging_config().to_logger_config()
    if args.debug:
        logging_config["log_level"] = "DEBUG"
    structured_logger = StructuredLogger(config=logging_config)

    engine = EligibilityEngine.from_config_manager(config_manager, structured_logger=structured_logger)
    async with engine:
        try:
            if args.command == 'check':
                report = await engine.evaluate(args.address, args.chains)
                print(json.dumps(report.to_dict(), indent=2))
                if args.strict:
                    report.raise_for_failures()
            elif args.command == 'chains':
                print(json.dumps([c.to_dict() for c in engine.supported_chains()], indent=2))
            else:
                gas_price = await engine.get_gas_price(args.chain_id)
                print(json.dumps(gas_price.to_dict(), indent=2))
        except ValidationError as e:
            logger.error(f"Invalid input: {e}")
            return EXIT_INVALID
        except TotalFailureError as e:
            print(json.dumps({
                "success": False,
                "error": str(e),
                "partialFailures": [f.to_dict() for f in e.failures]
            }, indent=2))
            return EXIT_FAILED
        except PartialFailureError as e:
            logger.error(f"Strict check failed: {e}")
            return EXIT_FAILED
        except GatewayError as e:
            structured_logger.log_error(e, {"function": args.command, "chain_id": e.chain_id})
            return EXIT_FAILED

    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
