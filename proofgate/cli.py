#!/usr/bin/env python3
"""
proofgate CLI

Holder, attestor and operator tooling: compute the hashes and commitments the
gate checks, sign attestations, and inspect configuration.

Usage:
    proofgate <command> [subcommand] [options]

Commands:
    inputs      Validate and hash public-input documents
    proof       Hash proof bytes
    commit      Principal, pseudonym and record commitments
    nullifier   Derive nullifiers and their publishable hashes
    keygen      Generate an Ed25519 attestor key
    attest      Sign and verify attestation envelopes
    config      Configuration management
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from proofgate import __version__
from proofgate.attestation import ATTESTATION_TYPE
from proofgate.config import ConfigError, ConfigManager, get_config_manager
from proofgate.errors import GateError
from proofgate.observability import GateLayer, configure_logging, get_logger


logger = get_logger("cli", GateLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, sort_keys=True, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=True)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _read_json(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise CLIError(f"File not found: {path}") from e
    except json.JSONDecodeError as e:
        raise CLIError(f"Invalid JSON in {path}: {e}") from e


def _read_proof(path: str, as_hex: bool) -> bytes:
    p = Path(path)
    if not p.exists():
        raise CLIError(f"File not found: {path}")
    if not as_hex:
        return p.read_bytes()
    text = p.read_text(encoding="utf-8").strip()
    if text.startswith("0x"):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise CLIError(f"Proof file is not hex: {path}") from e


class ProofgateCLI:
    """Main CLI application."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._config_manager = config_manager
        self.parser = argparse.ArgumentParser(
            prog="proofgate",
            description="Proof-gated record access tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument("--version", "-V", action="version", version=f"proofgate {__version__}")
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument("--quiet", "-q", action="store_true", help="Suppress error output")
        self.parser.add_argument("--config", "-c", help="YAML configuration file")

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = get_config_manager()
        return self._config_manager

    def _register_commands(self) -> None:
        self._register_inputs_commands()
        self._register_proof_commands()
        self._register_commit_commands()
        self._register_nullifier_commands()
        self._register_keygen_command()
        self._register_attest_commands()
        self._register_config_commands()

    def _register_inputs_commands(self) -> None:
        inputs = self.subparsers.add_parser("inputs", help="Public-input documents")
        inputs_sub = inputs.add_subparsers(dest="subcommand")
        inputs_sub.add_parser("hash", help="Compute public_inputs_hash").add_argument("file")
        inputs_sub.add_parser("validate", help="Validate against the public-inputs schema").add_argument("file")

    def _register_proof_commands(self) -> None:
        proof = self.subparsers.add_parser("proof", help="Proof bytes")
        proof_sub = proof.add_subparsers(dest="subcommand")
        hash_cmd = proof_sub.add_parser("hash", help="Compute proof_hash")
        hash_cmd.add_argument("file")
        hash_cmd.add_argument("--hex", action="store_true", help="File holds hex text rather than raw bytes")

    def _register_commit_commands(self) -> None:
        commit = self.subparsers.add_parser("commit", help="Commitments and pseudonyms")
        commit_sub = commit.add_subparsers(dest="subcommand")
        commit_sub.add_parser("principal", help="Commit to a principal address").add_argument("address")

        pseudonym = commit_sub.add_parser("pseudonym", help="Requester pseudonym for a record")
        pseudonym.add_argument("--requester", required=True)
        pseudonym.add_argument("--issuer", required=True)
        pseudonym.add_argument("--record-id", type=int, required=True)

        commit_sub.add_parser("record", help="Commit to record content (JSON file)").add_argument("file")

    def _register_nullifier_commands(self) -> None:
        nullifier = self.subparsers.add_parser("nullifier", help="Nullifiers")
        nullifier_sub = nullifier.add_subparsers(dest="subcommand")
        derive = nullifier_sub.add_parser("derive", help="Derive a nullifier")
        derive.add_argument("--seed", required=True)
        derive.add_argument("--requester", required=True)
        derive.add_argument("--record-id", type=int, required=True)

    def _register_keygen_command(self) -> None:
        keygen = self.subparsers.add_parser("keygen", help="Generate an Ed25519 attestor key")
        keygen.add_argument("--kid", default="key-1", help="Key id used in the verification method")
        keygen.add_argument("--out", "-o", help="Write the private JWK to this file")

    def _register_attest_commands(self) -> None:
        attest = self.subparsers.add_parser("attest", help="Attestation envelopes")
        attest_sub = attest.add_subparsers(dest="subcommand")

        sign = attest_sub.add_parser("sign", help="Sign an attestation envelope")
        sign.add_argument("--key", "-k", required=True, help="Private JWK file")
        sign.add_argument("--vk-version", type=int, required=True)
        pih = sign.add_mutually_exclusive_group(required=True)
        pih.add_argument("--public-inputs-hash")
        pih.add_argument("--inputs", help="Public-inputs JSON file to hash")
        ph = sign.add_mutually_exclusive_group(required=True)
        ph.add_argument("--proof-hash")
        ph.add_argument("--proof", help="Proof file to hash")
        sign.add_argument("--proof-hex", action="store_true", help="Proof file holds hex text")
        sign.add_argument("--rejected", action="store_true", help="Attest that verification failed")
        sign.add_argument("--ttl", type=int, default=0, help="TTL in seconds (0 = store default)")
        sign.add_argument("--out", "-o", help="Write the envelope to this file")

        attest_sub.add_parser("verify", help="Verify an envelope's signature").add_argument("file")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        config_sub.add_parser("get", help="Get configuration value").add_argument("path")
        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            if parsed.config:
                self.config_manager.load_from_file(parsed.config)
            obs = self.config_manager.config.observability
            configure_logging(obs.log_level.get(), obs.log_format.get())

            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, OutputFormat(parsed.format)))
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except GateError as e:
            if not parsed.quiet:
                print(f"Error: {e.reason_code}: {e.message}", file=sys.stderr)
            return 2

        except (ConfigError, OSError, ValueError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    # Inputs / proof handlers
    def _handle_inputs_hash(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import public_inputs_hash
        return {"public_inputs_hash": public_inputs_hash(_read_json(args.file))}

    def _handle_inputs_validate(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import PublicInputs
        from proofgate.schema import PUBLIC_INPUTS_SCHEMA, validate_against_schema
        data = _read_json(args.file)
        errors = validate_against_schema(data, PUBLIC_INPUTS_SCHEMA)
        if not errors:
            try:
                PublicInputs.from_dict(data)
            except GateError as e:
                errors.append(f"{e.field or '$'}: {e.message}")
        return {"valid": not errors, "errors": errors}

    def _handle_proof_hash(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import compute_proof_hash
        return {"proof_hash": compute_proof_hash(_read_proof(args.file, args.hex))}

    # Commitment handlers
    def _handle_commit_principal(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import commit_principal
        return {"requester_commitment": commit_principal(args.address)}

    def _handle_commit_pseudonym(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import compute_pseudonym
        return {"pseudonym": compute_pseudonym(args.requester, args.issuer, args.record_id)}

    def _handle_commit_record(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import compute_record_commitment
        return {"record_commitment": compute_record_commitment(_read_json(args.file))}

    def _handle_nullifier_derive(self, args: argparse.Namespace) -> Any:
        from proofgate.inputs import derive_nullifier, nullifier_hash
        nullifier = derive_nullifier(args.seed, args.requester, args.record_id)
        return {"nullifier": nullifier, "nullifier_hash": nullifier_hash(nullifier)}

    # Key / attestation handlers
    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        from proofgate.signing import generate_ed25519_jwk, load_private_key_from_jwk, public_jwk
        jwk = generate_ed25519_jwk(args.kid)
        _, vm = load_private_key_from_jwk(jwk)
        out = {"verification_method": vm, "did": vm.split("#", 1)[0], "public_jwk": public_jwk(jwk)}
        if args.out:
            Path(args.out).write_text(json.dumps(jwk, indent=2) + "\n", encoding="utf-8")
            out["path"] = args.out
            logger.info("Wrote attestor key", operation="keygen", did=out["did"])
        else:
            out["private_jwk"] = jwk
        return out

    def _handle_attest_sign(self, args: argparse.Namespace) -> Any:
        from proofgate.canonical import normalize_hex32
        from proofgate.inputs import compute_proof_hash, public_inputs_hash
        from proofgate.signing import load_signing_key, sign_envelope

        if args.inputs:
            pih = public_inputs_hash(_read_json(args.inputs))
        else:
            pih = normalize_hex32(args.public_inputs_hash, "public_inputs_hash")
        if args.proof:
            proof_hash = compute_proof_hash(_read_proof(args.proof, args.proof_hex))
        else:
            proof_hash = normalize_hex32(args.proof_hash, "proof_hash")

        private_key, vm = load_signing_key(args.key)
        envelope = sign_envelope(
            {
                "type": ATTESTATION_TYPE,
                "vk_version": args.vk_version,
                "public_inputs_hash": pih,
                "proof_hash": proof_hash,
                "verified": not args.rejected,
                "ttl": args.ttl,
            },
            private_key,
            vm,
        )
        if args.out:
            Path(args.out).write_text(json.dumps(envelope, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        return envelope

    def _handle_attest_verify(self, args: argparse.Namespace) -> Any:
        from proofgate.schema import ATTESTATION_SCHEMA, validate_against_schema
        from proofgate.signing import verify_envelope
        envelope = _read_json(args.file)
        errors = validate_against_schema(envelope, ATTESTATION_SCHEMA)
        if errors:
            return {"ok": False, "errors": errors}
        check = verify_envelope(envelope)
        result = {"ok": check.ok, "signer": check.signer}
        if check.error:
            result["error"] = check.error
        return result

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": self.config_manager.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self.config_manager.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self.config_manager.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return self.config_manager.export_schema()


def main() -> int:
    """CLI entry point."""
    cli = ProofgateCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
