"""
Groth16 proving for user spends.

The circuit, its proving key and its verification key are external
artifacts. ``SnarkjsProver`` drives the snarkjs command line; any other
backend implements ``Prover``. Artifacts are injected through a
``ProverArtifactSource`` (a local directory or a remote base URL).
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from ..config import ProverConfig
from ..crypto.hashing import PoseidonHasher
from ..errors import ConfigurationError, InvalidProofError, ProverError
from ..ledger.abi import encode_proof_signature
from .inputs import ProofInputs
from .operation import UserOperation

logger = logging.getLogger(__name__)

WASM_FILE = "zkteam_js/zkteam.wasm"
ZKEY_FILE = "ZkTeam_0001.zkey"
VERIFICATION_KEY_FILE = "verification_key.json"

Proof = Dict[str, Any]


@dataclass(frozen=True)
class ProverArtifacts:
    """Circuit artifacts needed to prove and verify."""

    wasm_path: str
    zkey_path: str
    verification_key: Dict[str, Any]


class ProverArtifactSource(ABC):
    """Provides circuit artifacts to the prover."""

    @abstractmethod
    async def get_artifacts(self) -> ProverArtifacts:
        """Return local paths to the artifacts, fetching them if needed."""


def _load_verification_key(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot load verification key from {path}: {e}", config_key="verification_key", cause=e
        ) from e


class LocalArtifactSource(ProverArtifactSource):
    """Artifacts already present in a directory."""

    def __init__(
        self,
        directory: str,
        wasm_file: str = WASM_FILE,
        zkey_file: str = ZKEY_FILE,
        verification_key_file: str = VERIFICATION_KEY_FILE,
    ):
        self.directory = directory
        self.wasm_file = wasm_file
        self.zkey_file = zkey_file
        self.verification_key_file = verification_key_file
        self._artifacts: Optional[ProverArtifacts] = None

    async def get_artifacts(self) -> ProverArtifacts:
        if self._artifacts is None:
            wasm_path = os.path.join(self.directory, self.wasm_file)
            zkey_path = os.path.join(self.directory, self.zkey_file)
            for path in (wasm_path, zkey_path):
                if not os.path.isfile(path):
                    raise ConfigurationError(
                        f"Missing prover artifact {path}", config_key="artifacts_dir"
                    )
            self._artifacts = ProverArtifacts(
                wasm_path=wasm_path,
                zkey_path=zkey_path,
                verification_key=_load_verification_key(
                    os.path.join(self.directory, self.verification_key_file)
                ),
            )
        return self._artifacts


class RemoteArtifactSource(ProverArtifactSource):
    """Artifacts downloaded once from ``base_url`` into ``cache_dir``."""

    def __init__(
        self,
        base_url: str,
        cache_dir: str,
        wasm_file: str = WASM_FILE,
        zkey_file: str = ZKEY_FILE,
        verification_key_file: str = VERIFICATION_KEY_FILE,
        timeout: float = 300.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache_dir = cache_dir
        self.files = (wasm_file, zkey_file, verification_key_file)
        self.timeout = timeout
        self._lock = asyncio.Lock()
        self._artifacts: Optional[ProverArtifacts] = None

    async def _download(self, session: aiohttp.ClientSession, name: str) -> str:
        target = os.path.join(self.cache_dir, name)
        if os.path.isfile(target):
            return target

        url = f"{self.base_url}/{name}"
        os.makedirs(os.path.dirname(target), exist_ok=True)
        partial = target + ".part"
        try:
            async with session.get(url) as response:
                response.raise_for_status()
                with open(partial, "wb") as f:
                    async for chunk in response.content.iter_chunked(1 << 16):
                        f.write(chunk)
        except aiohttp.ClientError as e:
            raise ProverError(f"Cannot download {url}: {e}", cause=e, retryable=True) from e
        os.replace(partial, target)
        logger.info(f"Downloaded prover artifact {url}")
        return target

    async def get_artifacts(self) -> ProverArtifacts:
        async with self._lock:
            if self._artifacts is None:
                timeout = aiohttp.ClientTimeout(total=self.timeout)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    wasm_path, zkey_path, vkey_path = [
                        await self._download(session, name) for name in self.files
                    ]
                self._artifacts = ProverArtifacts(
                    wasm_path=wasm_path,
                    zkey_path=zkey_path,
                    verification_key=_load_verification_key(vkey_path),
                )
            return self._artifacts


def proof_to_call_data(proof: Proof) -> Tuple[List[int], List[List[int]], List[int]]:
    """Groth16 proof as the (a, b, c) points a Solidity verifier takes."""
    a = [int(proof["pi_a"][0]), int(proof["pi_a"][1])]
    # G2 coordinates are stored (c0, c1) but passed to the verifier as (c1, c0).
    b = [
        [int(proof["pi_b"][0][1]), int(proof["pi_b"][0][0])],
        [int(proof["pi_b"][1][1]), int(proof["pi_b"][1][0])],
    ]
    c = [int(proof["pi_c"][0]), int(proof["pi_c"][1])]
    return a, b, c


class Prover(ABC):
    """Groth16 prover/verifier backend."""

    @abstractmethod
    async def full_prove(
        self, witnesses: Dict[str, Any], artifacts: ProverArtifacts
    ) -> Tuple[Proof, List[int]]:
        """Compute the witness and prove; returns (proof, public signals)."""

    @abstractmethod
    async def verify(
        self, verification_key: Dict[str, Any], public_signals: Sequence[int], proof: Proof
    ) -> bool:
        """Check a proof against the verification key."""

    async def export_call_data(self, proof: Proof, public_signals: Sequence[int]) -> bytes:
        """ABI-encode proof and public signals for the account's signature field."""
        a, b, c = proof_to_call_data(proof)
        return encode_proof_signature(a, b, c, [int(s) for s in public_signals])


class SnarkjsProver(Prover):
    """Runs ``snarkjs groth16`` in a subprocess."""

    def __init__(self, command: str = "snarkjs", timeout: Optional[float] = None):
        self.command = command
        self.timeout = timeout

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProverError(f"Cannot run {self.command}: {e}", cause=e) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ProverError(
                f"{self.command} {args[0]} {args[1]} timed out after {self.timeout}s",
                cause=e,
                retryable=True,
            ) from e
        return process.returncode, stdout.decode(), stderr.decode()

    async def full_prove(
        self, witnesses: Dict[str, Any], artifacts: ProverArtifacts
    ) -> Tuple[Proof, List[int]]:
        with tempfile.TemporaryDirectory(prefix="zkteam-") as work_dir:
            input_path = os.path.join(work_dir, "input.json")
            proof_path = os.path.join(work_dir, "proof.json")
            public_path = os.path.join(work_dir, "public.json")
            with open(input_path, "w", encoding="utf-8") as f:
                json.dump(_stringify(witnesses), f)

            code, _, stderr = await self._run(
                "groth16",
                "fullprove",
                input_path,
                artifacts.wasm_path,
                artifacts.zkey_path,
                proof_path,
                public_path,
            )
            if code != 0:
                raise ProverError(f"snarkjs fullprove failed: {stderr.strip()}")

            with open(proof_path, "r", encoding="utf-8") as f:
                proof = json.load(f)
            with open(public_path, "r", encoding="utf-8") as f:
                public_signals = [int(s) for s in json.load(f)]

        logger.debug(f"Generated proof with {len(public_signals)} public signals")
        return proof, public_signals

    async def verify(
        self, verification_key: Dict[str, Any], public_signals: Sequence[int], proof: Proof
    ) -> bool:
        with tempfile.TemporaryDirectory(prefix="zkteam-") as work_dir:
            paths = {}
            for name, content in (
                ("verification_key.json", verification_key),
                ("public.json", [str(s) for s in public_signals]),
                ("proof.json", proof),
            ):
                paths[name] = os.path.join(work_dir, name)
                with open(paths[name], "w", encoding="utf-8") as f:
                    json.dump(content, f)

            code, stdout, _ = await self._run(
                "groth16",
                "verify",
                paths["verification_key.json"],
                paths["public.json"],
                paths["proof.json"],
            )
        return code == 0 and "OK" in stdout


def create_prover(config: ProverConfig) -> SnarkjsProver:
    config.validate()
    return SnarkjsProver(command=config.snarkjs_command, timeout=config.timeout)


def create_artifact_source(config: ProverConfig) -> ProverArtifactSource:
    """
    Artifact source described by ``config``.

    A local ``artifacts_dir`` is used as is; otherwise the artifacts are
    downloaded from ``artifacts_url`` into ``cache_dir``.
    """
    config.validate()
    if config.artifacts_dir:
        return LocalArtifactSource(config.artifacts_dir)
    if config.artifacts_url:
        return RemoteArtifactSource(
            config.artifacts_url, config.cache_dir, timeout=config.download_timeout
        )
    raise ConfigurationError(
        "Set artifacts_dir or artifacts_url", config_key="artifacts_dir"
    )


def _stringify(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_stringify(v) for v in value]
    if isinstance(value, dict):
        return {k: _stringify(v) for k, v in value.items()}
    return value


async def finalize_proved_operation(
    operation: UserOperation,
    inputs: ProofInputs,
    prover: Prover,
    artifact_source: ProverArtifactSource,
) -> UserOperation:
    """
    Prove ``inputs`` bound to ``operation``'s call data and attach the proof.

    Raises:
        InvalidProofError: If the proof does not verify or its public
            signals disagree with the inputs
    """
    call_data_hash = PoseidonHasher.call_data_hash(operation.call_data)
    artifacts = await artifact_source.get_artifacts()

    proof, public_signals = await prover.full_prove(
        inputs.private_witnesses(call_data_hash), artifacts
    )
    if not await prover.verify(artifacts.verification_key, public_signals, proof):
        raise InvalidProofError()

    expected = inputs.public_outputs()
    if list(public_signals[: len(expected)]) != expected:
        raise InvalidProofError(
            "Invalid proof: public signals do not match the spend inputs",
            metadata={"public_signals": [str(s) for s in public_signals]},
        )

    signature = await prover.export_call_data(proof, public_signals)
    logger.info(f"Proved spend of {inputs.value} from {operation.sender}")
    return operation.with_signature(signature)
