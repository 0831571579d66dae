#!/usr/bin/env python3
"""
zkLogin bootstrap command line.

Commands:
  sign-in   generate an ephemeral key, derive a nonce, run the OAuth flow by
            pasting the redirect URL, bind the session and resolve addresses
  show      print the persisted session (public fields only)
  status    compare the session's max epoch with the chain's current epoch
  balances  list coin balances of the selected address
  sign-out  clear the persisted session

Configuration comes from the environment / .env (see core/settings.py).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from zklogin_bootstrap.core.errors import ZkLoginError
from zklogin_bootstrap.core.settings import settings
from zklogin_bootstrap.services.login import LoginFlow, require_active_session
from zklogin_bootstrap.services.oauth import ManualRedirectProvider, TokenExchanger, load_oauth_config
from zklogin_bootstrap.services.proof_client import ProofServiceClient
from zklogin_bootstrap.services.rpc import SuiRpcClient
from zklogin_bootstrap.services.session_store import SessionStore, build_storage, serialize_session


def say(msg: str) -> None:
    print(f"[zklogin] {msg}")


def fail(msg: str) -> None:
    print(f"[zklogin][FAIL] {msg}", file=sys.stderr)


def _open_store() -> SessionStore:
    store = SessionStore(build_storage())
    store.load()
    return store


async def cmd_sign_in(args: argparse.Namespace) -> int:
    oauth_config = load_oauth_config()
    provider = ManualRedirectProvider(oauth_config)
    proof_client = ProofServiceClient()
    flow = LoginFlow(
        _open_store(),
        proof_client,
        TokenExchanger(oauth_config, code_exchanger=provider),
        network=args.network,
    )
    try:
        result = await flow.sign_in(provider)
    finally:
        await proof_client.close()

    if result is None:
        say("Sign-in cancelled")
        return 0
    identity = result.session.identity
    say(f"Signed in as {identity.name or identity.sub} ({identity.email or 'no email'})")
    if result.address:
        say(f"Address: {result.address}")
    else:
        say("No address resolved yet")
    for warning in result.warnings:
        say(f"warning: {warning}")
    return 0


async def cmd_show(args: argparse.Namespace) -> int:
    session = _open_store().get()
    if session is None:
        say("Not signed in")
        return 1
    data = json.loads(serialize_session(session))["session"]
    if not args.with_token:
        data.pop("id_token", None)
    print(json.dumps(data, indent=2))
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    rpc = SuiRpcClient()
    store = _open_store()
    try:
        epoch = await rpc.get_current_epoch()
        session = await require_active_session(store, current_epoch=epoch)
    finally:
        await rpc.close()
    say(f"Session valid: epoch {epoch}, expires after epoch {session.max_epoch}")
    return 0


async def cmd_balances(args: argparse.Namespace) -> int:
    session = _open_store().get()
    address = args.address or (session.address if session else None)
    if not address:
        fail("No address given and no resolved session address")
        return 1
    rpc = SuiRpcClient()
    try:
        balances = await rpc.get_all_balances(address)
    finally:
        await rpc.close()
    for entry in balances:
        print(f"{entry.get('coinType')}: {entry.get('totalBalance')}")
    if not balances:
        say(f"No balances for {address}")
    return 0


async def cmd_sign_out(args: argparse.Namespace) -> int:
    _open_store().clear()
    say("Signed out")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zklogin-bootstrap", description="zkLogin session bootstrap")
    sub = parser.add_subparsers(dest="command", required=True)

    sign_in = sub.add_parser("sign-in", help="Run the OAuth + nonce binding flow")
    sign_in.add_argument("--network", default=settings.network, help="mainnet, testnet or devnet")
    sign_in.set_defaults(handler=cmd_sign_in)

    show = sub.add_parser("show", help="Print the persisted session")
    show.add_argument("--with-token", action="store_true", help="Include the raw ID token")
    show.set_defaults(handler=cmd_show)

    status = sub.add_parser("status", help="Check session expiry against the chain")
    status.set_defaults(handler=cmd_status)

    balances = sub.add_parser("balances", help="List balances of an address")
    balances.add_argument("--address", help="Defaults to the session's selected address")
    balances.set_defaults(handler=cmd_balances)

    sign_out = sub.add_parser("sign-out", help="Clear the persisted session")
    sign_out.set_defaults(handler=cmd_sign_out)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(args.handler(args))
    except ZkLoginError as err:
        fail(err.message)
        return 1
    except ValueError as err:
        fail(str(err))
        return 2


if __name__ == "__main__":
    sys.exit(main())
