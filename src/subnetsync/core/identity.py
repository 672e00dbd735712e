"""
Identifier and display-name generation for remote subnets.

Ids are derived from the CR name plus a short hash of the CR UID, so a
reconcile of the same Subnet always lands on the same remote id:

    gen = IdentityGenerator(store)
    gen.build_id(subnet_cr)           # "web_3fK9a"
    gen.build_child_id(subnetset, "0c1f2e3d")   # "pool-0c1f2e3d_Hq2x7"

When the candidate is already taken by another owner, the random part is
regenerated and the store is checked again, up to ``max_attempts`` times.
"""

from __future__ import annotations

import hashlib
import logging
import string
import uuid
from typing import Callable, Optional, Tuple, Union

from .constants import (
    BASE62_HASH_LENGTH,
    CONNECTOR_UNDERLINE,
    HASH_LENGTH,
    MAX_ID_LENGTH,
    MAX_SUBNET_NAME_LENGTH,
    UUID_HASH_LENGTH,
)
from .crd import Subnet, SubnetSet
from .errors import IdentityExhaustedError
from .store import SubnetStore

Owner = Union[Subnet, SubnetSet]

_BASE62 = string.digits + string.ascii_lowercase + string.ascii_uppercase


# ---------- Hash helpers ----------

def base62(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    if n == 0:
        return _BASE62[0]
    out = []
    while n:
        n, r = divmod(n, 62)
        out.append(_BASE62[r])
    return "".join(reversed(out))


def hash_base62(value: str, length: int = BASE62_HASH_LENGTH) -> str:
    return base62(hashlib.sha1(value.encode("utf-8")).digest())[:length]


def hash_hex(value: str, length: int = HASH_LENGTH) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:length]


def random_index() -> str:
    """Short random discriminator used for SubnetSet children."""
    return hash_hex(str(uuid.uuid4()))


def truncate_name(name: str, limit: int) -> str:
    """
    Cut ``name`` to ``limit`` characters, keeping it distinct from other long
    names with the same prefix by appending ``_<hash>``.
    """
    if len(name) <= limit:
        return name
    suffix = hash_base62(name)
    keep = max(0, limit - len(suffix) - len(CONNECTOR_UNDERLINE))
    return f"{name[:keep]}{CONNECTOR_UNDERLINE}{suffix}"


def join_id(name: str, uid_hash: str) -> str:
    """``<name>_<hash>`` limited to the NSX id length (the hash is never cut)."""
    keep = MAX_ID_LENGTH - len(uid_hash) - len(CONNECTOR_UNDERLINE)
    return f"{name[:keep]}{CONNECTOR_UNDERLINE}{uid_hash}"


# ---------- Generator ----------

class IdentityGenerator:
    """Collision-checked id/name builder backed by the subnet store."""

    def __init__(
        self,
        store: SubnetStore,
        *,
        max_attempts: int = 5,
        index_factory: Callable[[], str] = random_index,
        uuid_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.max_attempts = int(max_attempts)
        self._new_index = index_factory
        self._new_uuid = uuid_factory
        self.log = logger or logging.getLogger("subnetsync.identity")

    # ------------- Deterministic parts -------------

    @staticmethod
    def build_id(obj: Owner, uid: Optional[str] = None) -> str:
        return join_id(obj.metadata.name, hash_base62(uid or obj.metadata.uid, UUID_HASH_LENGTH))

    @staticmethod
    def build_name(obj: Owner) -> str:
        return truncate_name(obj.metadata.name, MAX_SUBNET_NAME_LENGTH)

    @staticmethod
    def build_child_id(obj: Owner, index: str) -> str:
        return join_id(f"{obj.metadata.name}-{index}", hash_base62(obj.metadata.uid, UUID_HASH_LENGTH))

    @staticmethod
    def build_child_name(obj: Owner, index: str) -> str:
        return truncate_name(f"{obj.metadata.name}-{index}", MAX_SUBNET_NAME_LENGTH)

    def new_index(self) -> str:
        return self._new_index()

    # ------------- Collision-checked -------------

    def is_available(self, candidate: str, obj: Owner) -> bool:
        """Free, or already held by the same owner (re-reconcile)."""
        existing = self.store.get_by_key(candidate)
        if existing is None:
            return True
        return existing.tag_value(obj.owner_uid_scope) == obj.metadata.uid

    def unique_id(self, obj: Owner) -> Tuple[str, str]:
        """
        Return ``(id, display_name)`` for a Subnet.

        The first candidate is the stable uid-derived id; on collision the uid
        hash is replaced by the hash of a fresh random UUID.
        """
        candidate = self.build_id(obj)
        for attempt in range(self.max_attempts):
            if self.is_available(candidate, obj):
                return candidate, self.build_name(obj)
            self.log.info(
                "subnet id collision: id=%s owner=%s/%s attempt=%d",
                candidate, obj.metadata.namespace, obj.metadata.name, attempt + 1,
            )
            candidate = self.build_id(obj, uid=self._new_uuid())
        raise IdentityExhaustedError(
            f"no free id for {obj.kind} {obj.metadata.namespace}/{obj.metadata.name} "
            f"after {self.max_attempts} attempts"
        )

    def unique_child_identity(self, obj: Owner) -> Tuple[str, str]:
        """Return ``(id, display_name)`` for a new SubnetSet child."""
        for attempt in range(self.max_attempts):
            index = self.new_index()
            candidate = self.build_child_id(obj, index)
            if self.store.get_by_key(candidate) is None:
                return candidate, self.build_child_name(obj, index)
            self.log.info(
                "subnetset child id collision: id=%s owner=%s/%s attempt=%d",
                candidate, obj.metadata.namespace, obj.metadata.name, attempt + 1,
            )
        raise IdentityExhaustedError(
            f"no free child id for {obj.kind} {obj.metadata.namespace}/{obj.metadata.name} "
            f"after {self.max_attempts} attempts"
        )
