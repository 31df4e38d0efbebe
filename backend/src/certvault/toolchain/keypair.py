"""RSA key pair and CSR generation through the OpenSSL command line.

All files the toolchain needs (config, key, CSR) live in a private temporary
directory that is removed on every exit path, cancellation included. Only the
PEM strings read back into memory leave this module.
"""

import asyncio
import logging
import re
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from opentelemetry import trace

from certvault.errors import ToolchainFailure
from certvault.metrics import certvault_metrics
from certvault.vault.files import write_private_file

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CSR_BEGIN = "-----BEGIN CERTIFICATE REQUEST-----"
CSR_END = "-----END CERTIFICATE REQUEST-----"

# DNS names and wildcards only; anything else could break out of the config file
_HOST_NAME_PATTERN = re.compile(r"^(\*\.)?[A-Za-z0-9]([A-Za-z0-9.-]{0,251}[A-Za-z0-9])?$")


@dataclass
class KeyPair:
    """A freshly generated private key and the CSR signed by it."""

    common_name: str
    host_names: list[str]
    private_key_pem: str
    csr_pem: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return (
            f"KeyPair(common_name={self.common_name!r}, host_names={self.host_names!r}, "
            f"created_at={self.created_at.isoformat()})"
        )


class KeyPairGenerator:
    """Generates RSA key pairs and SAN-bearing CSRs with OpenSSL.

    Subject (fixed apart from CN):
    - CN=<common_name>, O=Self-Signed, OU=IT, L=Local, ST=State, C=US
    - subjectAltName: DNS.1..N = each host name
    """

    RSA_KEY_SIZE = 2048
    DIGEST = "sha256"
    SUBJECT_DEFAULTS = {
        "O": "Self-Signed",
        "OU": "IT",
        "L": "Local",
        "ST": "State",
        "C": "US",
    }

    def __init__(self, openssl_binary: str = "openssl", timeout_seconds: float = 60.0) -> None:
        self.openssl_binary = openssl_binary
        self.timeout_seconds = timeout_seconds

    async def generate(self, common_name: str, host_names: list[str]) -> KeyPair:
        """Generate a private key and a CSR covering every host name.

        Raises:
            ToolchainFailure: On bad input, a non-zero exit, or a malformed CSR.
        """
        config = self.build_config(common_name, host_names)

        with tracer.start_as_current_span("KeyPairGenerator.generate") as span:
            span.set_attribute("common_name", common_name)
            span.set_attribute("host_names", host_names)

            start_time = time.monotonic()

            with tempfile.TemporaryDirectory(prefix="certvault-") as tmp:
                tmp_dir = Path(tmp)
                config_path = tmp_dir / "openssl.cnf"
                key_path = tmp_dir / "server.key"
                csr_path = tmp_dir / "server.csr"

                write_private_file(config_path, config.encode("utf-8"))

                await self._run("genrsa", "-out", str(key_path), str(self.RSA_KEY_SIZE))
                key_path.chmod(0o600)
                await self._run(
                    "req",
                    "-new",
                    "-key",
                    str(key_path),
                    "-out",
                    str(csr_path),
                    "-config",
                    str(config_path),
                )

                private_key_pem = key_path.read_text(encoding="ascii")
                csr_pem = csr_path.read_text(encoding="ascii")

            self._check_csr(csr_pem)

            duration = time.monotonic() - start_time
            certvault_metrics.record_keypair_generated(duration)
            logger.info(
                "keypair_generated",
                extra={
                    "common_name": common_name,
                    "host_names": host_names,
                    "duration_seconds": duration,
                },
            )

            return KeyPair(
                common_name=common_name,
                host_names=list(host_names),
                private_key_pem=private_key_pem,
                csr_pem=csr_pem,
            )

    async def validate(self, key_pair: KeyPair) -> bool:
        """Check the private key's structural integrity with `openssl rsa -check`."""
        with tracer.start_as_current_span("KeyPairGenerator.validate") as span:
            with tempfile.TemporaryDirectory(prefix="certvault-") as tmp:
                key_path = Path(tmp) / "check.key"
                write_private_file(key_path, key_pair.private_key_pem.encode("ascii"))
                try:
                    await self._run("rsa", "-in", str(key_path), "-check", "-noout")
                except ToolchainFailure as e:
                    span.set_attribute("valid", False)
                    logger.warning(
                        "keypair_validation_failed",
                        extra={"common_name": key_pair.common_name, "error": str(e)},
                    )
                    return False

            span.set_attribute("valid", True)
            return True

    @classmethod
    def build_config(cls, common_name: str, host_names: list[str]) -> str:
        """Render the OpenSSL request config with the SAN list.

        Raises:
            ToolchainFailure: If no host names are given or any name is unsafe.
        """
        if not host_names:
            raise ToolchainFailure("No hostnames provided")
        for name in [common_name, *host_names]:
            if not _HOST_NAME_PATTERN.fullmatch(name):
                raise ToolchainFailure(f"Invalid host name: {name!r}")

        subject = "\n".join(f"{k} = {v}" for k, v in cls.SUBJECT_DEFAULTS.items())
        alt_names = "\n".join(f"DNS.{i} = {name}" for i, name in enumerate(host_names, start=1))

        return (
            "[req]\n"
            f"default_bits = {cls.RSA_KEY_SIZE}\n"
            "prompt = no\n"
            f"default_md = {cls.DIGEST}\n"
            "req_extensions = req_ext\n"
            "distinguished_name = dn\n"
            "\n"
            "[dn]\n"
            f"CN = {common_name}\n"
            f"{subject}\n"
            "\n"
            "[req_ext]\n"
            "subjectAltName = @alt_names\n"
            "\n"
            "[alt_names]\n"
            f"{alt_names}\n"
        )

    def _check_csr(self, csr_pem: str) -> None:
        if "\n" not in csr_pem:
            raise ToolchainFailure("CSR must contain newline characters")
        stripped = csr_pem.strip()
        if not (stripped.startswith(CSR_BEGIN) and stripped.endswith(CSR_END)):
            raise ToolchainFailure("CSR is not a PEM certificate request")

    async def _run(self, *args: str) -> None:
        """Run one openssl subcommand, killing it if cancelled or timed out."""
        command = args[0]
        try:
            proc = await asyncio.create_subprocess_exec(
                self.openssl_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            certvault_metrics.record_toolchain_run(command, "missing_binary")
            raise ToolchainFailure(f"Toolchain binary not found: {self.openssl_binary}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except (asyncio.CancelledError, asyncio.TimeoutError) as e:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if isinstance(e, asyncio.CancelledError):
                raise
            certvault_metrics.record_toolchain_run(command, "timeout")
            raise ToolchainFailure(
                f"openssl {command} timed out after {self.timeout_seconds}s"
            ) from e

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            certvault_metrics.record_toolchain_run(command, "failed")
            logger.error(
                "toolchain_command_failed",
                extra={"command": command, "returncode": proc.returncode, "stderr": message},
            )
            raise ToolchainFailure(
                f"openssl {command} exited with {proc.returncode}: {message}",
                returncode=proc.returncode,
                stderr=message,
            )

        certvault_metrics.record_toolchain_run(command, "ok")
