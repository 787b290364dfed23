"""Resume state for the confirmation watcher and the mirror rebuild."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

logger = logging.getLogger(__name__)

DEFAULT_MAX_FACTS = 10_000


class CheckpointStore(Protocol):
    """Where the watcher remembers chain heights and already delivered facts,
    and the coordinator remembers which users and agents it has seen."""

    def get_height(self, chain_id: int) -> Optional[int]:
        ...

    def set_height(self, chain_id: int, height: int) -> None:
        ...

    def has_fact(self, key: str) -> bool:
        ...

    def add_fact(self, key: str) -> None:
        ...

    def discard_facts(self, user: str) -> int:
        ...

    def remember(self, kind: str, address: str) -> None:
        ...

    def forget_address(self, kind: str, address: str) -> None:
        ...

    def addresses(self, kind: str) -> List[str]:
        ...


def _fact_user(key: str) -> str:
    parts = key.split(":", 2)
    return parts[1] if len(parts) == 3 else ""


class InMemoryCheckpointStore:
    """Heights, facts and known addresses held in process memory.

    Facts are kept in insertion order; once ``max_facts`` is reached the
    oldest are dropped.
    """

    def __init__(self, max_facts: int = DEFAULT_MAX_FACTS) -> None:
        self.max_facts = max_facts
        self._heights: Dict[int, int] = {}
        self._facts: Dict[str, None] = {}
        self._addresses: Dict[str, Set[str]] = {}

    def get_height(self, chain_id: int) -> Optional[int]:
        return self._heights.get(chain_id)

    def set_height(self, chain_id: int, height: int) -> None:
        # Heights only move forward
        current = self._heights.get(chain_id)
        if current is None or height > current:
            self._heights[chain_id] = height

    def has_fact(self, key: str) -> bool:
        return key in self._facts

    def add_fact(self, key: str) -> None:
        self._facts[key] = None
        while len(self._facts) > self.max_facts:
            del self._facts[next(iter(self._facts))]

    def discard_facts(self, user: str) -> int:
        """Drop every fact recorded for ``user``; returns how many went."""
        user = user.lower()
        stale = [key for key in self._facts if _fact_user(key) == user]
        for key in stale:
            del self._facts[key]
        return len(stale)

    @property
    def fact_count(self) -> int:
        return len(self._facts)

    def remember(self, kind: str, address: str) -> None:
        self._addresses.setdefault(kind, set()).add(address.lower())

    def forget_address(self, kind: str, address: str) -> None:
        self._addresses.get(kind, set()).discard(address.lower())

    def addresses(self, kind: str) -> List[str]:
        return sorted(self._addresses.get(kind, set()))


class JsonFileCheckpointStore(InMemoryCheckpointStore):
    """Checkpoint store persisted to a JSON file after every change.

    File layout::

        {
          "heights": {"8453": 123},
          "facts": ["settled:0xabc...:<hash>", ...],
          "addresses": {"users": ["0xb1..."], "agents": ["0xa1..."]}
        }

    Facts are written oldest first so the cap keeps dropping the same end
    after a reload.
    """

    def __init__(self, path: str | Path, max_facts: int = DEFAULT_MAX_FACTS) -> None:
        super().__init__(max_facts)
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable checkpoint file %s: %s", self.path, exc)
            return
        self._heights = {int(k): int(v) for k, v in (payload.get("heights") or {}).items()}
        facts = list(payload.get("facts") or [])[-self.max_facts:]
        self._facts = dict.fromkeys(facts)
        self._addresses = {
            kind: {a.lower() for a in values}
            for kind, values in (payload.get("addresses") or {}).items()
        }
        logger.info(
            "Loaded checkpoints from %s (%d chains, %d facts, %d users)",
            self.path,
            len(self._heights),
            len(self._facts),
            len(self._addresses.get("users", ())),
        )

    def _save(self) -> None:
        payload = {
            "heights": {str(k): v for k, v in self._heights.items()},
            "facts": list(self._facts),
            "addresses": {kind: sorted(values) for kind, values in self._addresses.items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def set_height(self, chain_id: int, height: int) -> None:
        before = self._heights.get(chain_id)
        super().set_height(chain_id, height)
        if self._heights.get(chain_id) != before:
            self._save()

    def add_fact(self, key: str) -> None:
        if key in self._facts:
            return
        super().add_fact(key)
        self._save()

    def discard_facts(self, user: str) -> int:
        dropped = super().discard_facts(user)
        if dropped:
            self._save()
        return dropped

    def remember(self, kind: str, address: str) -> None:
        if address.lower() in self._addresses.get(kind, set()):
            return
        super().remember(kind, address)
        self._save()

    def forget_address(self, kind: str, address: str) -> None:
        if address.lower() not in self._addresses.get(kind, set()):
            return
        super().forget_address(kind, address)
        self._save()
