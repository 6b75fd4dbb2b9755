"""
sniwatch/enrich/asn.py

Classifies an IP to the autonomous system that owns it.

PURPOSE:
    The operator registers ASNs (id, name, CIDR prefixes) from the console;
    each rendered connection row asks which of them owns its destination.

DESIGN:
    - Table: ASN id -> AsnRecord, in registration order, persisted wholesale
      under one storage key on every registration.
    - Lookup cache: normalized address -> AsnRecord | None. Misses are cached
      too. The cache is never patched; any table change empties it.
    - Inactivity TTL: when no registration or lookup happened for `ttl`
      seconds, the in-memory table and the cache are dropped together. The
      next call reloads the table from storage.
    - First match wins, in table order (not longest-prefix match).

Time and storage are injected so TTL behaviour is deterministic under test.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from functools import lru_cache
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sniwatch.base.config import SniWatchConfig, get_config
from sniwatch.base.exceptions import AsnError, ErrorCode
from sniwatch.data.storage import JsonFileStore, KeyValueStore, MemoryStore
from sniwatch.stream.events import endpoint_host

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_STORAGE_KEY = "asn_cache"


class AsnRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    prefixes: Tuple[str, ...] = ()


def normalize_address(value: str) -> str:
    """
    Reduce an endpoint to its bare, canonical address.

    Ports and IPv6 brackets are stripped and IPv4-mapped IPv6 is unwrapped.
    Unparseable input is returned stripped so it can still be cached.
    """
    host = endpoint_host(str(value))
    addr = _parse_address(host)
    return str(addr) if addr is not None else host


@lru_cache(maxsize=4096)
def _parse_address(value: str) -> Optional[IPAddress]:
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


@lru_cache(maxsize=4096)
def _parse_network(prefix: str) -> Optional[IPNetwork]:
    try:
        return ipaddress.ip_network(prefix.strip(), strict=False)
    except (ValueError, TypeError):
        return None


def ip_in_prefix(addr: Optional[IPAddress], prefix: str) -> bool:
    """CIDR containment; malformed prefixes and cross-family pairs are False."""
    if addr is None:
        return False
    network = _parse_network(prefix)
    if network is None or network.version != addr.version:
        return False
    return addr in network


class AsnClassifier:
    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ):
        self._store = store if store is not None else MemoryStore()
        self._ttl = ttl
        self._clock = clock
        self._storage_key = storage_key

        self._table: Optional[Dict[str, AsnRecord]] = None
        self._lookup: Dict[str, Optional[AsnRecord]] = {}
        self._last_activity: Optional[float] = None

        # Number of full table scans; cache hits don't count
        self.scan_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, asn_id: str, name: str, prefixes: Union[str, Iterable[str]]) -> Optional[AsnRecord]:
        """
        Insert or overwrite an ASN, persist the table and empty the cache.

        A lone CIDR string counts as a one-prefix list. Invalid records are
        logged and leave the table untouched; the return value is then None.
        """
        if isinstance(prefixes, str):
            prefixes = (prefixes,)
        try:
            record = AsnRecord(id=str(asn_id).strip(), name=name, prefixes=tuple(prefixes))
        except (ValidationError, TypeError) as e:
            error = AsnError(
                ErrorCode.ASN_RECORD_INVALID,
                "Invalid ASN record",
                details={"id": asn_id, "error": str(e)},
            )
            logger.warning(f"[ASN] {error}")
            return None

        self._expire_if_idle()
        table = self._load_table()
        table[record.id] = record
        self._store.set(self._storage_key, {k: v.model_dump(mode="json") for k, v in table.items()})
        self._lookup.clear()
        self._touch()
        logger.info(f"[ASN] Registered {record.id} ({record.name}) with {len(record.prefixes)} prefixes")
        return record

    def classify(self, ip: str) -> Optional[AsnRecord]:
        """Owning ASN for an address (port/brackets allowed), or None."""
        self._expire_if_idle()
        key = normalize_address(ip)

        if key in self._lookup:
            self._touch()
            return self._lookup[key]

        table = self._load_table()
        self.scan_count += 1
        addr = _parse_address(key)

        result: Optional[AsnRecord] = None
        if addr is not None:
            for record in table.values():
                if any(ip_in_prefix(addr, prefix) for prefix in record.prefixes):
                    result = record
                    break

        self._lookup[key] = result
        self._touch()
        return result

    def all_records(self) -> Dict[str, AsnRecord]:
        self._expire_if_idle()
        return dict(self._load_table())

    def clear(self) -> None:
        """Forget everything, including the persisted table."""
        self._store.remove(self._storage_key)
        self._table = None
        self._lookup.clear()
        self._last_activity = None
        logger.info("[ASN] Table cleared")

    @property
    def cache_size(self) -> int:
        return len(self._lookup)

    @property
    def table_loaded(self) -> bool:
        return self._table is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        self._last_activity = self._clock()

    def _expire_if_idle(self) -> None:
        if self._last_activity is None:
            return
        if self._clock() - self._last_activity < self._ttl:
            return
        logger.debug(f"[ASN] Idle for {self._ttl:.0f}s; dropping table and {len(self._lookup)} cached lookups")
        self._table = None
        self._lookup.clear()
        self._last_activity = None

    def _load_table(self) -> Dict[str, AsnRecord]:
        if self._table is not None:
            return self._table

        table: Dict[str, AsnRecord] = {}
        data = self._store.get(self._storage_key)
        if isinstance(data, dict):
            for asn_id, raw in data.items():
                try:
                    record = AsnRecord.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"[ASN] Skipping malformed stored record {asn_id!r}: {e.error_count()} errors")
                    continue
                table[record.id] = record
        elif data is not None:
            logger.warning(f"[ASN] Ignoring stored table: expected an object, got {type(data).__name__}")

        self._table = table
        return table


# --- Module-Level Singleton ---

_classifier: Optional[AsnClassifier] = None


def get_asn_classifier(config: Optional[SniWatchConfig] = None) -> AsnClassifier:
    """Shared classifier backed by the snapshot directory; built on first use."""
    global _classifier
    if _classifier is None:
        cfg = config or get_config()
        _classifier = AsnClassifier(
            JsonFileStore(cfg.storage.snapshot_path),
            ttl=cfg.asn.ttl_seconds,
            storage_key=cfg.asn.storage_key,
        )
    return _classifier


def reset_asn_classifier() -> None:
    global _classifier
    _classifier = None
