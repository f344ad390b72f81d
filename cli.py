#!/usr/bin/env python3
"""Simple CLI for driving the WalletConnect bridge locally"""

import argparse
import asyncio
from typing import Optional

import httpx
from eth_utils import is_address

from wcbridge.bridge import WalletBridge
from wcbridge.config import Settings, settings
from wcbridge.core.errors import BridgeError
from wcbridge.core.events import (
    BridgeEvent,
    BusyChanged,
    ErrorRaised,
    PairingStatusChanged,
    RequestAbandoned,
    RequestReceived,
    RequestResolved,
    SessionEstablished,
    SessionProposalReceived,
    SessionRemoved,
)
from wcbridge.core.execution import ExecutionError, TransactionExecutor
from wcbridge.core.relay import RequestState
from wcbridge.core.session import PairingStatus
from wcbridge.logging_config import setup_logging
from wcbridge.services import AccountNotFoundError, AccountService


def _executor(cfg: Settings) -> TransactionExecutor:
    return TransactionExecutor(
        rpc_url=cfg.rpc_url,
        chain_id=cfg.chain_id,
        signer_url=cfg.owner_signer_url,
        timeout=cfg.http_timeout_seconds,
    )


async def _resolve_account(accounts: AccountService, account: str) -> str:
    """Accept either an address or a username."""
    if is_address(account):
        return account
    return await accounts.resolve_username(account)


async def _confirm(prompt: str) -> bool:
    answer = await asyncio.to_thread(input, prompt)
    return answer.strip().lower() in ("y", "yes")


def print_proposal(event: SessionProposalReceived) -> None:
    proposal = event.proposal
    peer = proposal.proposer
    print(f"\n🔗 Session proposal #{proposal.id} from {peer.name}")
    if peer.url:
        print(f"   URL: {peer.url}")
    if peer.description:
        print(f"   {peer.description}")
    print(f"   Chains:  {', '.join(proposal.requested_chains) or 'any'}")
    print(f"   Methods: {', '.join(proposal.requested_methods) or 'none'}")


def print_request(event: RequestReceived) -> None:
    request = event.request
    print(f"\n📨 Request #{request.id}: {request.method} on {request.chain_id}")
    tx = request.params[0] if request.params and isinstance(request.params[0], dict) else {}
    print(f"   To:    {tx.get('to', '-')}")
    print(f"   Value: {tx.get('value', '0x0')}")
    data = tx.get("data") or tx.get("input") or "0x"
    print(f"   Data:  {data[:66]}{'...' if len(data) > 66 else ''}")


def print_event(event: BridgeEvent) -> None:
    if isinstance(event, SessionEstablished):
        session = event.session
        print(f"\n✅ Connected to {session.peer.name} ({session.topic[:8]}...)")
        print(f"   Accounts: {', '.join(session.granted_accounts)}")
    elif isinstance(event, SessionRemoved):
        origin = "by the dApp" if event.remote else "locally"
        print(f"\n👋 Session {event.topic[:8]}... disconnected {origin}")
    elif isinstance(event, PairingStatusChanged):
        print(f"🔄 Pairing: {event.status.value}{f' ({event.message})' if event.message else ''}")
    elif isinstance(event, RequestResolved):
        response = event.response
        if response.is_error:
            print(f"❌ Request #{event.request_id} answered with error {response.error.code}: {response.error.message}")
        else:
            print(f"✅ Request #{event.request_id} answered: {response.result}")
    elif isinstance(event, RequestAbandoned):
        print(f"⚠️  Request #{event.request_id} abandoned: {event.reason}")
    elif isinstance(event, BusyChanged) and event.is_busy:
        print("⏳ Waiting for the owner wallet and confirmation...")
    elif isinstance(event, ErrorRaised):
        print(f"❌ {event.message}")


async def cli_connect(uri: str, account: Optional[str], auto_approve: bool):
    """Pair with a dApp and relay its transactions until every session closes"""
    cfg = settings.model_copy(update={"auto_approve_sessions": auto_approve})
    bridge = WalletBridge(cfg)
    events: asyncio.Queue = asyncio.Queue()
    bridge.bus.subscribe_all(events.put_nowait)

    try:
        if account:
            bridge.set_account(await _resolve_account(bridge.accounts, account))
        address = bridge.get_account()
        if not address:
            print("❌ No managed account configured (use --account or MANAGED_ACCOUNT_ADDRESS)")
            return
        print(f"🏦 Managed account: {address}")

        await bridge.initialize()
        await bridge.pair(uri)
        print("🔍 Waiting for a session proposal...")

        connected = False
        while True:
            event = await events.get()
            print_event(event)

            if isinstance(event, SessionProposalReceived):
                print_proposal(event)
                if not auto_approve and event.proposal.id in bridge.manager.pending_proposals:
                    if await _confirm("Approve this session? [y/N] "):
                        await bridge.approve_session(event.proposal)
                    else:
                        await bridge.reject_session(event.proposal)
                        return

            elif isinstance(event, SessionEstablished):
                connected = True

            elif isinstance(event, RequestReceived):
                print_request(event)
                request_id = event.request.id
                if await _confirm("Execute through the managed account? [y/N] "):
                    tx_hash = await bridge.approve_request(request_id)
                    if tx_hash:
                        print(f"📤 Submitted {tx_hash}")
                    elif bridge.relay.outcome(request_id) == RequestState.ABANDONED:
                        print(f"⚠️  Request {request_id} was replaced before it could be submitted")
                else:
                    await bridge.reject_request(request_id)

            elif isinstance(event, PairingStatusChanged) and event.status == PairingStatus.ERROR:
                return

            elif isinstance(event, SessionRemoved) and connected and not bridge.manager.sessions:
                return

    except KeyboardInterrupt:
        print("\nGoodbye! 👋")
    except (BridgeError, AccountNotFoundError, ExecutionError, ValueError) as e:
        print(f"❌ Error: {e}")
    finally:
        for topic in list(bridge.manager.sessions):
            await bridge.disconnect_session(topic)
        await bridge.dispose()


async def cli_owner(account: str, owner: Optional[str] = None):
    """Show (or verify) the owner of a managed account"""
    executor = _executor(settings)
    accounts = AccountService(executor, settings.global_namespace_address)
    try:
        address = await _resolve_account(accounts, account)
        if owner:
            ok = await accounts.verify_owner(address, owner)
            print(f"{'✅' if ok else '❌'} {owner} {'is' if ok else 'is not'} the owner of {address}")
        else:
            print(f"🔑 Owner of {address}: {await accounts.get_owner(address)}")
    except (AccountNotFoundError, ExecutionError, ValueError, httpx.HTTPError) as e:
        print(f"❌ Error: {e}")
    finally:
        await executor.close()


async def cli_resolve(username: str):
    """Resolve a username to its managed account"""
    executor = _executor(settings)
    accounts = AccountService(executor, settings.global_namespace_address)
    try:
        address = await accounts.resolve_username(username)
        print(f"🏷️  {username} → {address}")
    except (AccountNotFoundError, ExecutionError, ValueError, httpx.HTTPError) as e:
        print(f"❌ Error: {e}")
    finally:
        await executor.close()


async def cli_username(address: str):
    """Look up the primary username of an account"""
    executor = _executor(settings)
    accounts = AccountService(executor, settings.global_namespace_address)
    try:
        username = await accounts.username_of(address)
        print(f"🏷️  {address} → {username or '(no username)'}")
    except (ExecutionError, ValueError, httpx.HTTPError) as e:
        print(f"❌ Error: {e}")
    finally:
        await executor.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Managed-account WalletConnect bridge")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    connect_parser = subparsers.add_parser("connect", help="Pair with a dApp using a wc: URI")
    connect_parser.add_argument("uri", help="WalletConnect pairing URI")
    connect_parser.add_argument("--account", help="Managed account address or username")
    connect_parser.add_argument("--auto-approve", action="store_true", help="Approve session proposals without asking")

    owner_parser = subparsers.add_parser("owner", help="Show the owner of a managed account")
    owner_parser.add_argument("account", help="Account address or username")
    owner_parser.add_argument("--verify", metavar="ADDRESS", help="Check that ADDRESS is the owner")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a username to an account")
    resolve_parser.add_argument("username", help="Username in the global namespace")

    username_parser = subparsers.add_parser("username", help="Primary username of an account")
    username_parser.add_argument("address", help="Account address")

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level)
    command = args.command.lower()

    if command == "connect":
        await cli_connect(args.uri, args.account, args.auto_approve)

    elif command == "owner":
        await cli_owner(args.account, args.verify)

    elif command == "resolve":
        await cli_resolve(args.username)

    elif command == "username":
        await cli_username(args.address)

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
