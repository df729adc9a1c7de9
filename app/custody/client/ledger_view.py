from __future__ import annotations

import threading


class OptimisticLedgerView:
    """Client-side view of quantities: confirmed values plus unconfirmed local deltas.

    Deltas never become the record. ``reconcile`` replaces both layers with an
    authoritative snapshot, dropping every pending delta for the keys it covers.
    """

    def __init__(self, confirmed: dict | None = None):
        self._lock = threading.Lock()
        self._confirmed: dict[tuple[str, str], int] = {}
        self._deltas: dict[tuple[str, str], int] = {}
        if confirmed:
            self.reconcile(confirmed)

    @staticmethod
    def _key(custodian_id, variant_id) -> tuple[str, str]:
        return str(custodian_id), str(variant_id)

    def apply_optimistic(self, custodian_id, variant_id, delta: int) -> int:
        key = self._key(custodian_id, variant_id)
        with self._lock:
            self._deltas[key] = self._deltas.get(key, 0) + int(delta)
            return self._value(key)

    def reconcile(self, snapshot: dict, *, full: bool = False) -> None:
        """Apply an authoritative ``{(custodian_id, variant_id): quantity}`` snapshot.

        With ``full=True`` the snapshot replaces the whole view.
        """
        normalized = {self._key(*key): int(quantity) for key, quantity in snapshot.items()}
        with self._lock:
            if full:
                self._confirmed = dict(normalized)
                self._deltas = {}
                return
            for key, quantity in normalized.items():
                self._confirmed[key] = quantity
                self._deltas.pop(key, None)

    def discard(self, custodian_id, variant_id) -> None:
        with self._lock:
            self._deltas.pop(self._key(custodian_id, variant_id), None)

    def quantity(self, custodian_id, variant_id) -> int:
        with self._lock:
            return self._value(self._key(custodian_id, variant_id))

    def confirmed(self, custodian_id, variant_id) -> int:
        with self._lock:
            return self._confirmed.get(self._key(custodian_id, variant_id), 0)

    def has_pending(self) -> bool:
        with self._lock:
            return any(self._deltas.values())

    def _value(self, key) -> int:
        return max(0, self._confirmed.get(key, 0) + self._deltas.get(key, 0))
