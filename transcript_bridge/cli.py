#!/usr/bin/env python3
"""
Transcript Bridge Command Line Interface

Usage:
    transcript-bridge serve [--host 0.0.0.0] [--port 3001]
    transcript-bridge derive-key
    transcript-bridge decrypt --notification <file> [--output <file>]
    transcript-bridge thumbprint

Configuration is read from the environment (see transcript_bridge.config).
"""

import argparse
import json
import sys
from typing import List, Optional


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def cmd_serve(args):
    """Run the HTTP service."""
    import uvicorn

    from .config import Settings, is_debug
    from .logging_config import configure_logging

    settings = Settings.from_env()
    configure_logging("DEBUG" if is_debug() else settings.log_level, settings.log_json, settings.log_file)
    uvicorn.run("transcript_bridge.main:app", host=args.host, port=args.port, log_config=None)
    return 0


def cmd_derive_key(args):
    """Resolve key material once and report the outcome."""
    from .config import Settings
    from .errors import KeyUnavailable
    from .keys import KeyMaterialResolver

    settings = Settings.from_env()
    resolver = KeyMaterialResolver.from_settings(settings)
    try:
        material = resolver.resolve()
    except KeyUnavailable as e:
        print(f"✗ Key material unavailable: {e.message}", file=sys.stderr)
        return 1

    print(f"✓ Key material resolved from {material.source}")
    print(f"Derived key path: {settings.resolved_derived_key_path}")
    return 0


def cmd_decrypt(args):
    """Decrypt and reconstruct every encrypted entry of a saved notification."""
    from pydantic import ValidationError

    from .config import Settings
    from .decryption import EncryptedEnvelope, HybridDecryptor
    from .errors import PipelineError
    from .keys import KeyMaterialResolver
    from .models import NotificationBody
    from .reconstruction import DefaultIdentity, PayloadReconstructor

    settings = Settings.from_env()
    try:
        body = NotificationBody.model_validate(load_json(args.notification))
    except (OSError, ValueError, ValidationError) as e:
        print(f"✗ Cannot read notification: {e}", file=sys.stderr)
        return 1

    resolver = KeyMaterialResolver.from_settings(settings)
    decryptor = HybridDecryptor(verify_signature=settings.verify_data_signature)
    reconstructor = PayloadReconstructor(DefaultIdentity(settings.tenant_id, settings.default_user_object_id))

    results = []
    failures = 0
    for index, entry in enumerate(body.value):
        if entry.encrypted_content is None:
            continue
        try:
            envelope = EncryptedEnvelope.from_wire(entry.encrypted_content.model_dump(by_alias=True))
            plaintext = decryptor.decrypt(envelope, resolver.resolve())
        except PipelineError as e:
            failures += 1
            results.append({"index": index, "error": e.to_dict()})
            continue

        record = reconstructor.reconstruct_bytes(plaintext)
        if record is None:
            failures += 1
            results.append({"index": index, "error": {"code": "PAYLOAD_UNPARSEABLE"}})
        else:
            results.append({"index": index, "strategy": record.strategy, "record": record.to_dict()})

    if args.output:
        save_json(results, args.output)
        print(f"Results saved to: {args.output}")
    else:
        print(json.dumps(results, indent=2))

    if not results:
        print("✗ No encrypted entries found", file=sys.stderr)
        return 1
    return 1 if failures else 0


def cmd_thumbprint(args):
    """Print the SHA-1 thumbprint of the resolved certificate."""
    from .config import Settings
    from .errors import KeyUnavailable
    from .keys import KeyMaterialResolver

    try:
        material = KeyMaterialResolver.from_settings(Settings.from_env()).resolve()
    except KeyUnavailable as e:
        print(f"✗ Key material unavailable: {e.message}", file=sys.stderr)
        return 1

    thumbprint = material.thumbprint()
    if thumbprint is None:
        print("✗ No certificate accompanies the key", file=sys.stderr)
        return 1
    print(thumbprint)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Meeting transcript notification bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=3001)

    subparsers.add_parser("derive-key", help="Resolve and persist key material")

    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt a saved notification")
    decrypt_parser.add_argument("--notification", "-n", required=True, help="Notification JSON file")
    decrypt_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    subparsers.add_parser("thumbprint", help="Print the certificate thumbprint")

    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "derive-key":
        return cmd_derive_key(args)
    elif args.command == "decrypt":
        return cmd_decrypt(args)
    elif args.command == "thumbprint":
        return cmd_thumbprint(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
