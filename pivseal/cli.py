"""
PivSeal Command Line
====================

Seal Vault bootstrap secrets to a PIV device and use them again.

Commands:
    ls                 List PIV devices and which one would be selected
    seal IN OUT        Encrypt a JSON document to a device
    unseal-file IN     Decrypt an envelope and print its JSON payload
    init OUT           Initialize Vault and seal the unseal key + root token
    unseal FILE        Decrypt the unseal key and unseal Vault
    share FROM TO      Re-encrypt an envelope for another device
    login FILE         Decrypt the root token and write a new Vault token

Exit Codes:
    0 = success, 1 = operation failed, 2 = usage error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional, Sequence

import requests

from pivseal import __version__
from pivseal.core.config import PIN_ENV_VAR, PivSealConfig, resolve_pin
from pivseal.core.crypto.engine import EnvelopeEngine
from pivseal.core.device.criteria import SelectionCriteria
from pivseal.core.device.selector import DeviceSelector
from pivseal.core.device.token import Slot, TokenBackend
from pivseal.core.errors import PivSealError, VaultError
from pivseal.core.file_ops.atomic import write_atomic
from pivseal.core.file_ops.envelope_ops import decrypt_from_device, encrypt_to_device, reencrypt
from pivseal.core.logging import get_secure_logger
from pivseal.vault.client import VaultClient


@dataclass(slots=True)
class CommandContext:
    """Everything a command needs, built once per invocation."""
    config: PivSealConfig
    criteria: SelectionCriteria
    selector: DeviceSelector
    engine: EnvelopeEngine
    logger: logging.Logger
    vault_session: Optional[requests.Session] = None

    def vault(self) -> VaultClient:
        return VaultClient(self.config.vault, session=self.vault_session, logger=self.logger)


def _read_input(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    return Path(path).read_bytes()


def _read_envelope(ctx: CommandContext, path: str) -> bytes:
    ctx.logger.info("Reading encrypted vault secrets path=%s", path)
    return Path(path).read_bytes()


def _write_envelope(ctx: CommandContext, path: str, data: bytes) -> None:
    ctx.logger.info("Writing encrypted vault secrets path=%s", path)
    write_atomic(path, data, 0o600)


def _unseal_key(payload: Any) -> str:
    keys = payload.get("keys") if isinstance(payload, dict) else None
    if not keys:
        raise VaultError("Decrypted secrets do not contain an unseal key")
    return keys[0]


def cmd_ls(args: argparse.Namespace, ctx: CommandContext) -> int:
    inventory = ctx.selector.inventory(ctx.criteria, Slot.KEY_MANAGEMENT)

    for error in inventory.errors:
        print(f"error: {error}", file=sys.stderr)

    if not inventory.selected:
        print("!! No cards match the given --serial/--avoid-serial flags", file=sys.stderr)

    for i, device in enumerate(inventory.devices):
        print(f"{i}: {device}")

    return 0


def cmd_seal(args: argparse.Namespace, ctx: CommandContext) -> int:
    try:
        payload = json.loads(_read_input(args.input))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        print(f"error: {args.input} is not valid JSON: {e}", file=sys.stderr)
        return 1

    envelope = encrypt_to_device(payload, ctx.selector, ctx.criteria, ctx.engine, logger=ctx.logger)
    _write_envelope(ctx, args.output, envelope.to_json())
    return 0


def cmd_unseal_file(args: argparse.Namespace, ctx: CommandContext) -> int:
    payload, _ = decrypt_from_device(
        _read_envelope(ctx, args.input), ctx.selector, ctx.criteria, ctx.engine, logger=ctx.logger
    )
    json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


def cmd_init(args: argparse.Namespace, ctx: CommandContext) -> int:
    with ctx.vault() as vault:
        secrets = vault.init(secret_shares=1, secret_threshold=1)

    envelope = encrypt_to_device(secrets, ctx.selector, ctx.criteria, ctx.engine, logger=ctx.logger)
    _write_envelope(ctx, args.output, envelope.to_json())
    return 0


def cmd_unseal(args: argparse.Namespace, ctx: CommandContext) -> int:
    payload, _ = decrypt_from_device(
        _read_envelope(ctx, args.file), ctx.selector, ctx.criteria, ctx.engine, logger=ctx.logger
    )

    with ctx.vault() as vault:
        status = vault.unseal(_unseal_key(payload))

    if status.sealed:
        ctx.logger.warning(
            "Unable to unseal vault t=%d n=%d progress=%d",
            status.threshold, status.shares, status.progress,
        )
        print("error: Vault has not been unsealed", file=sys.stderr)
        return 1

    ctx.logger.info("Unseal successful version=%s cluster=%s", status.version, status.cluster_name)
    return 0


def cmd_share(args: argparse.Namespace, ctx: CommandContext) -> int:
    envelope = reencrypt(
        _read_envelope(ctx, args.source), ctx.selector, ctx.criteria, ctx.engine, logger=ctx.logger
    )
    _write_envelope(ctx, args.target, envelope.to_json())
    return 0


def cmd_login(args: argparse.Namespace, ctx: CommandContext) -> int:
    payload, _ = decrypt_from_device(
        _read_envelope(ctx, args.file), ctx.selector, ctx.criteria, ctx.engine, logger=ctx.logger
    )
    root_token = payload.get("root_token") if isinstance(payload, dict) else None
    if not root_token:
        raise VaultError("Decrypted secrets do not contain a root token")

    with ctx.vault() as vault:
        auth = vault.create_token(
            root_token,
            role=args.token_role,
            policies=args.token_policy,
            ttl=args.token_ttl,
        )

    token_path = Path(args.token_path) if args.token_path else ctx.config.paths.token_path
    ctx.logger.info(
        "Writing token to file lease_id=%s lease_duration=%d path=%s",
        auth.lease_id, auth.lease_duration, token_path,
    )
    write_atomic(token_path, auth.client_token.encode("utf-8"), 0o600)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pivseal",
        description="Protect Vault unseal keys and root tokens with a PIV device.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    device = parser.add_argument_group("PIV device")
    device.add_argument("--serial", type=int, default=None,
                        help="Select the PIV device with this serial number")
    device.add_argument("--avoid-serial", type=int, action="append", default=[],
                        help="Never auto-select this serial (repeatable)")
    device.add_argument("--pin", default=None,
                        help="PIN for the device's private key (default: $YUBIKEY_PIN or 123456)")
    device.add_argument("--verbose", action="store_true",
                        help="Verbose device diagnostics")

    log = parser.add_argument_group("logging")
    log.add_argument("--log-level", default=None,
                     choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    log.add_argument("--log-json", action="store_true", help="Emit JSON log lines")

    vault = parser.add_argument_group("Vault")
    vault.add_argument("--vault-endpoint", default=None, help="Vault API endpoint")
    vault.add_argument("--vault-timeout", type=float, default=None, help="Request timeout in seconds")
    vault.add_argument("--vault-max-retries", type=int, default=None,
                       help="Retries on 5xx and connection errors; 0 disables")
    vault.add_argument("--vault-min-retry-wait", type=float, default=None,
                       help="Minimum seconds to wait before a retry")
    vault.add_argument("--vault-max-retry-wait", type=float, default=None,
                       help="Maximum seconds to wait before a retry")

    sub = parser.add_subparsers(dest="command", required=True)

    p_ls = sub.add_parser("ls", help="List available PIV devices and slots")
    p_ls.set_defaults(func=cmd_ls)

    p_seal = sub.add_parser("seal", help="Encrypt a JSON document to a PIV device")
    p_seal.add_argument("input", help="JSON input file, or - for stdin")
    p_seal.add_argument("output", help="Envelope output file")
    p_seal.set_defaults(func=cmd_seal)

    p_open = sub.add_parser("unseal-file", help="Decrypt an envelope and print its payload")
    p_open.add_argument("input", help="Envelope file")
    p_open.set_defaults(func=cmd_unseal_file)

    p_init = sub.add_parser("init", help="Initialize Vault and seal its unseal key and root token")
    p_init.add_argument("output", help="Envelope output file")
    p_init.set_defaults(func=cmd_init)

    p_unseal = sub.add_parser("unseal", help="Decrypt an unseal key and unseal Vault")
    p_unseal.add_argument("file", help="Envelope file")
    p_unseal.set_defaults(func=cmd_unseal)

    p_share = sub.add_parser("share", help="Re-encrypt an envelope with another PIV device")
    p_share.add_argument("source", help="Existing envelope file")
    p_share.add_argument("target", help="New envelope file")
    p_share.set_defaults(func=cmd_share)

    p_login = sub.add_parser("login", help="Decrypt the root token and create a local Vault token")
    p_login.add_argument("file", help="Envelope file")
    p_login.add_argument("--token-role", default=None, help="Optional role for the new token")
    p_login.add_argument("--token-policy", action="append", default=[],
                         help="Policy for the new token (repeatable)")
    p_login.add_argument("--token-path", default=None,
                         help="Where to write the token (default: ~/.vault-token)")
    p_login.add_argument("--token-ttl", default="1h", help="TTL for the new token")
    p_login.set_defaults(func=cmd_login)

    return parser


def _apply_overrides(config: PivSealConfig, args: argparse.Namespace) -> PivSealConfig:
    """Command line flags take precedence over loaded configuration."""
    device = config.device
    if args.serial is not None:
        device = replace(device, serial=args.serial)
    if args.avoid_serial:
        device = replace(device, avoid_serials=device.avoid_serials + tuple(args.avoid_serial))
    if args.verbose:
        device = replace(device, verbose=True)

    vault = config.vault
    vault_flags = {
        "address": args.vault_endpoint,
        "timeout": args.vault_timeout,
        "max_retries": args.vault_max_retries,
        "min_retry_wait": args.vault_min_retry_wait,
        "max_retry_wait": args.vault_max_retry_wait,
    }
    vault_changes = {k: v for k, v in vault_flags.items() if v is not None}
    if vault_changes:
        vault = replace(vault, **vault_changes)

    logging_config = config.logging
    if args.log_level:
        logging_config = replace(logging_config, level=args.log_level)
    if args.log_json:
        logging_config = replace(logging_config, enable_json=True)

    return replace(config, device=device, vault=vault, logging=logging_config)


def main(
    argv: Optional[Sequence[str]] = None,
    backend: Optional[TokenBackend] = None,
    vault_session: Optional[requests.Session] = None,
) -> int:
    """
    Entry point for the pivseal command.

    Args:
        argv: Arguments (default: sys.argv[1:])
        backend: Token backend (default: YubiKeys over PC/SC)
        vault_session: HTTP session for the Vault client

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _apply_overrides(PivSealConfig.load(), args)
    except ValueError as e:
        parser.error(str(e))

    logger = get_secure_logger(
        "pivseal",
        log_dir=config.paths.log_dir,
        level=config.logging.level,
        enable_console=config.logging.enable_console,
        enable_file=config.logging.enable_file,
        enable_json=config.logging.enable_json,
        max_file_size=config.logging.max_file_size_bytes,
        backup_count=config.logging.backup_count,
    )

    if args.pin is None and os.environ.get(PIN_ENV_VAR):
        logger.info("Using yubikey pin from environment variable %s", PIN_ENV_VAR)

    try:
        if backend is None:
            from pivseal.core.device.yubikey import YubiKeyBackend
            backend = YubiKeyBackend(logger)

        ctx = CommandContext(
            config=config,
            criteria=config.device.criteria().with_pin(resolve_pin(args.pin)),
            selector=DeviceSelector(backend, logger),
            engine=EnvelopeEngine(logger),
            logger=logger,
            vault_session=vault_session,
        )
        return args.func(args, ctx)
    except (PivSealError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
