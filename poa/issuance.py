"""
Proof Issuance

Packages an accepted session into a proof artifact and mints a token for
it. Both steps run after the session core has accepted the session;
failures here never change the session's verdict.

Capabilities:
- ArtifactStore: stores proof metadata and returns a content id (CID)
- Issuer: mints a non-transferable token pointing at that CID
"""
import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import httpx

from poa.config import AttentionConfig
from poa.errors import ConfigError, IssuanceError
from poa.lifecycle import ProofRecord
from poa.models.session import now_ms, normalize_identity

logger = logging.getLogger(__name__)

PINATA_PIN_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"


def canonical_json(data: dict) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


class ArtifactStore(ABC):
    @abstractmethod
    def upload(self, proof: ProofRecord) -> str:
        """Store proof metadata and return its content id."""

    @abstractmethod
    def fetch(self, cid: str) -> dict:
        """Load proof metadata by content id."""


class InMemoryArtifactStore(ArtifactStore):
    """Content-addressed in-process store for development and tests."""

    def __init__(self):
        self._objects: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def upload(self, proof: ProofRecord) -> str:
        data = proof.to_dict()
        cid = "mem-" + hashlib.sha256(canonical_json(data)).hexdigest()
        with self._lock:
            self._objects[cid] = data
        return cid

    def fetch(self, cid: str) -> dict:
        with self._lock:
            if cid not in self._objects:
                raise IssuanceError(f"Unknown artifact: {cid}")
            return dict(self._objects[cid])


class PinataArtifactStore(ArtifactStore):
    """Pins proof metadata to IPFS through the Pinata API."""

    def __init__(
        self,
        api_key: Optional[str],
        secret_key: Optional[str],
        gateway: str = "https://ipfs.io/ipfs/",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if not api_key or not secret_key:
            raise ConfigError("IPFS_API_KEY and IPFS_SECRET_KEY are required for the pinata provider")
        self.gateway = gateway if gateway.endswith("/") else gateway + "/"
        self._headers = {
            "pinata_api_key": api_key,
            "pinata_secret_api_key": secret_key,
        }
        self._client = client or httpx.Client(timeout=timeout)
        self._clock = clock or now_ms

    def upload(self, proof: ProofRecord) -> str:
        payload = json.dumps(proof.to_dict(), indent=2).encode("utf-8")
        files = {"file": (f"poa-proof-{self._clock()}.json", payload, "application/json")}
        data = {"pinataMetadata": json.dumps({"name": f"POA Proof - {proof.task_id}"})}

        logger.info("Uploading proof to IPFS via pinata (task %s)", proof.task_id)
        try:
            response = self._client.post(PINATA_PIN_URL, headers=self._headers, files=files, data=data)
            response.raise_for_status()
            cid = response.json()["IpfsHash"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise IssuanceError(f"Failed to upload to IPFS: {e}") from e

        logger.info("Uploaded to IPFS: %s", cid)
        return cid

    def fetch(self, cid: str) -> dict:
        try:
            response = self._client.get(f"{self.gateway}{cid}")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise IssuanceError(f"Failed to fetch from IPFS: {e}") from e


@dataclass(frozen=True)
class MintReceipt:
    token_id: str
    transaction_hash: str
    block_number: int


@dataclass(frozen=True)
class TokenRecord:
    token_id: str
    owner: str
    task_id: str
    ipfs_hash: str
    minted_at: int

    def to_dict(self) -> dict:
        return {
            "tokenId": self.token_id,
            "owner": self.owner,
            "taskId": self.task_id,
            "ipfsHash": self.ipfs_hash,
            "mintedAt": self.minted_at,
        }


class Issuer(ABC):
    @abstractmethod
    def mint(self, owner: str, task_id: str, ipfs_hash: str) -> MintReceipt:
        """Mint a proof token for ``owner``."""

    @abstractmethod
    def get(self, token_id: str) -> Optional[TokenRecord]:
        """Look up a minted token."""

    @abstractmethod
    def tokens_of(self, owner: str) -> List[TokenRecord]:
        """All tokens minted to ``owner``."""


class InMemoryIssuer(Issuer):
    """Sequential token ledger held in process memory."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._tokens: Dict[str, TokenRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock or now_ms

    def mint(self, owner: str, task_id: str, ipfs_hash: str) -> MintReceipt:
        with self._lock:
            block_number = len(self._tokens) + 1
            token_id = str(block_number)
            record = TokenRecord(
                token_id=token_id,
                owner=normalize_identity(owner),
                task_id=task_id,
                ipfs_hash=ipfs_hash,
                minted_at=self._clock(),
            )
            self._tokens[token_id] = record
        tx_hash = "0x" + hashlib.sha256(canonical_json(record.to_dict())).hexdigest()
        return MintReceipt(token_id=token_id, transaction_hash=tx_hash, block_number=block_number)

    def get(self, token_id: str) -> Optional[TokenRecord]:
        with self._lock:
            return self._tokens.get(str(token_id))

    def tokens_of(self, owner: str) -> List[TokenRecord]:
        owner = normalize_identity(owner)
        with self._lock:
            return [t for t in self._tokens.values() if t.owner == owner]


@dataclass(frozen=True)
class IssuanceReceipt:
    ipfs_hash: str
    token_id: str
    transaction_hash: str
    block_number: int

    def to_dict(self) -> dict:
        return {
            "ipfsHash": self.ipfs_hash,
            "tokenId": self.token_id,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
        }


class ProofIssuer:
    """Uploads the proof artifact, then mints a token pointing at it."""

    def __init__(self, artifacts: ArtifactStore, issuer: Issuer):
        self.artifacts = artifacts
        self.issuer = issuer

    def issue(self, proof: ProofRecord) -> IssuanceReceipt:
        """
        Raises:
            IssuanceError: if either collaborator fails.
        """
        try:
            ipfs_hash = self.artifacts.upload(proof)
            logger.info("Minting POA for user %s, task %s", proof.identity, proof.task_id)
            receipt = self.issuer.mint(proof.identity, proof.task_id, ipfs_hash)
        except IssuanceError:
            raise
        except Exception as e:
            raise IssuanceError(f"Proof issuance failed: {e}") from e

        logger.info("POA minted! Token ID: %s, TX: %s", receipt.token_id, receipt.transaction_hash)
        return IssuanceReceipt(
            ipfs_hash=ipfs_hash,
            token_id=receipt.token_id,
            transaction_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
        )


def build_issuer(config: AttentionConfig, clock: Optional[Callable[[], int]] = None) -> ProofIssuer:
    """
    Wire collaborators from configuration.

    Raises:
        ConfigError: if the selected provider is missing credentials.
    """
    if config.artifact_provider == "pinata":
        artifacts = PinataArtifactStore(
            config.ipfs_api_key,
            config.ipfs_secret_key,
            gateway=config.ipfs_gateway,
            timeout=config.issuance_timeout_s,
            clock=clock,
        )
    else:
        artifacts = InMemoryArtifactStore()
    return ProofIssuer(artifacts, InMemoryIssuer(clock=clock))
