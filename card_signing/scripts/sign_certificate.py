#!/usr/bin/env python3
"""Issue an end-entity certificate signed by a smartcard-held CA."""

import argparse
import sys
from enum import IntEnum
from pathlib import Path

from card_signing.lib.config import resolve_config
from card_signing.lib.errors import (
    ArtifactWriteError,
    ConfigError,
    CryptoError,
    ProvisioningError,
    ProvisioningInterrupted,
    SigningError,
)
from card_signing.lib.logging_config import LOGGER
from card_signing.lib.models import FinalArtifacts
from card_signing.lib.provisioner import CardSigningProvisioner


class ExitCode(IntEnum):
    """Process exit status per outcome."""

    SUCCESS = 0
    FAILURE = 1
    USAGE = 2
    CONFIG = 3
    CRYPTO = 4
    SIGNING = 5
    OUTPUT = 6
    DECLINED = 10
    INTERRUPTED = 130


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="card-signing",
        description="Generate a key and have its certificate signed by a CA on an OpenPGP card",
    )
    parser.add_argument(
        "conf_file",
        type=Path,
        help="path to the configuration file",
    )
    parser.add_argument(
        "basename",
        help="basename for the entity's PKCS12 and PEM files",
    )
    return parser.parse_args()


def _print_summary(artifacts: FinalArtifacts, passphrase: str | None) -> None:
    print()
    print("The following third-party files were generated:")
    print(f"  {artifacts.pem_path} : PEM file with private key and signed cert")
    print(f"  {artifacts.p12_path} : PKCS12 file with private key and signed cert")
    print()
    if passphrase is None:
        print("Private elements are protected with the configured PASSPHRASE")
    else:
        print("Private elements are protected with the following generated password:")
        print(f"  {passphrase}")
    print("under alias:")
    print(f"  {artifacts.alias}")
    print()
    print("You can verify the validity of the certificate via openssl:")
    print(f'  openssl verify -x509_strict -CAfile <your-ca-cert.pem> "{artifacts.pem_path}"')


def main() -> int:
    """Run the provisioning pipeline for one entity.

    Returns:
        Exit code, see ExitCode
    """
    args = _parse_args()

    try:
        config = resolve_config(args.conf_file)
    except ConfigError as e:
        LOGGER.error("Configuration error: %s", e)
        return ExitCode.CONFIG

    try:
        provisioner = CardSigningProvisioner(config)
        artifacts = provisioner.provision(args.basename)
    except ProvisioningInterrupted as e:
        LOGGER.error("Provisioning interrupted: %s", e)
        return ExitCode.INTERRUPTED
    except KeyboardInterrupt:
        LOGGER.error("Provisioning interrupted by operator")
        return ExitCode.INTERRUPTED
    except CryptoError as e:
        LOGGER.error("Key generation failed at %s: %s", e.step.value, e, extra={"stage": e.stage})
        return ExitCode.CRYPTO
    except SigningError as e:
        LOGGER.error("Signing failed: %s", e, extra={"stage": e.stage})
        return ExitCode.SIGNING
    except ArtifactWriteError as e:
        LOGGER.error("Writing final artifacts failed: %s", e, extra={"stage": e.stage})
        return ExitCode.OUTPUT
    except ProvisioningError as e:
        LOGGER.error("Provisioning failed during %s: %s", e.stage, e, extra={"stage": e.stage})
        return ExitCode.FAILURE
    except Exception as e:
        LOGGER.error("Provisioning failed: %s", e)
        return ExitCode.FAILURE

    if artifacts is None:
        LOGGER.info("Signing aborted by operator, no files written")
        return ExitCode.DECLINED

    LOGGER.info("Certificate issued for %s, serial %s", artifacts.subject, artifacts.serial_number)
    _print_summary(artifacts, config.passphrase if config.passphrase_generated else None)
    return ExitCode.SUCCESS


if __name__ == "__main__":
    sys.exit(main())
