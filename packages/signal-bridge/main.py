#!/usr/bin/env python3

import argparse
import asyncio
import logging
import sys

from signal_bridge import BridgeRelayer, LocalNetwork, Message, MessageStatus
from signal_bridge.relayer import demo_config, derive_address

# Set up root logger
logger = logging.getLogger(__name__)


async def send_demo_traffic(network: LocalNetwork, count: int) -> list[bytes]:
    """Send ``count`` messages from a funded account on the source chain."""
    sender = derive_address("demo.sender")
    recipient = derive_address("demo.recipient")
    network.source_chain.fund(sender, 10**21)

    signals = []
    for i in range(count):
        message = Message(
            dest_chain_id=network.target_bridge.chain_id,
            owner=sender,
            to=recipient,
            deposit_value=1000,
            call_value=1000,
            processing_fee=1000,
            gas_limit=1_000_000,
            memo=f"demo message {i}",
        )
        signal = network.source_bridge.send_message(message, caller=sender, value=message.total_value)
        signals.append(signal)
        await asyncio.sleep(0)
    logger.info(f"Sent {count} demo messages, recipient {recipient}")
    return signals


async def main():
    """Main entry point for the signal bridge relayer."""
    parser = argparse.ArgumentParser(description="Signal Bridge Relayer")
    parser.add_argument(
        "--demo",
        type=int,
        default=0,
        metavar="N",
        help="Run against a built-in local network and relay N demo messages"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=1.0,
        help="Block and polling interval in seconds for --demo"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Give up on the demo after this many seconds"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Starting in {'DEMO' if args.demo else 'ENV'} mode")

    try:
        if args.demo:
            config = demo_config(polling_interval=args.interval)
            config.log_config()
            relayer = BridgeRelayer(config, LocalNetwork.create(config))
        else:
            relayer = BridgeRelayer.from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - SOURCE_CHAIN_ID / TARGET_CHAIN_ID: Chain identifiers")
        logger.error("  - SOURCE_BRIDGE_ADDRESS / TARGET_BRIDGE_ADDRESS: Bridge accounts")
        logger.error("  - SOURCE_VAULT_ADDRESS / TARGET_VAULT_ADDRESS: Escrow vault accounts")
        sys.exit(1)

    run_task = asyncio.create_task(relayer.run())
    try:
        if not args.demo:
            await run_task
            return

        signals = await send_demo_traffic(relayer.network, args.demo)
        bridge = relayer.network.target_bridge
        deadline = asyncio.get_running_loop().time() + args.timeout
        while asyncio.get_running_loop().time() < deadline:
            statuses = [bridge.get_message_status(s) for s in signals]
            if all(s.is_terminal for s in statuses):
                break
            await asyncio.sleep(args.interval)

        done = sum(bridge.get_message_status(s) == MessageStatus.DONE for s in signals)
        logger.info(f"Demo finished: {done}/{len(signals)} messages DONE")
        logger.info(f"Relayer stats: {relayer.event_processor.get_stats()}")
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        relayer.stop()
        await run_task


if __name__ == "__main__":
    asyncio.run(main())
