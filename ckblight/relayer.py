"""In-memory queue of transactions waiting to be relayed to peers."""

from __future__ import annotations

from collections import OrderedDict
from time import monotonic

from ckblight.chain import Transaction


class PendingTxs:
    """Pending transactions kept in insertion order, bounded by a size limit.

    Each entry remembers the peers it has already been announced to.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._txs: OrderedDict[bytes, tuple[Transaction, int, set[str]]] = OrderedDict()
        self.updated_at = monotonic()

    def __len__(self) -> int:
        return len(self._txs)

    def push(self, tx: Transaction, cycles: int) -> None:
        """Add a transaction, evicting the oldest one when over the limit."""
        tx_hash = tx.hash()
        self._txs.pop(tx_hash, None)
        self._txs[tx_hash] = (tx, cycles, set())
        if len(self._txs) > self.limit:
            self._txs.popitem(last=False)
        self.updated_at = monotonic()

    def get(self, tx_hash: bytes) -> tuple[Transaction, int, set[str]] | None:
        """The transaction, its cycles and the peers it was sent to, if pending."""
        entry = self._txs.get(bytes(tx_hash))
        if entry is None:
            return None
        tx, cycles, peers = entry
        return tx, cycles, set(peers)

    def fetch_transaction_hashes_for_broadcast(self, peer_id: str) -> list[bytes]:
        """Hashes not yet announced to the peer; they are marked as announced."""
        hashes = []
        for tx_hash, (_, _, peers) in self._txs.items():
            if peer_id not in peers:
                peers.add(peer_id)
                hashes.append(tx_hash)
        return hashes

    def is_not_empty_and_updated_at(self, seconds: float) -> bool:
        """Whether there are pending transactions and one was pushed within seconds."""
        return bool(self._txs) and monotonic() - self.updated_at < seconds