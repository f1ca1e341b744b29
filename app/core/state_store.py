import json
import logging
import os
from typing import Dict, Any, List, Optional, Tuple

from pydantic import ValidationError

from app.core.interfaces import ClusterSizingState, TransitionRecord

logger = logging.getLogger(__name__)


class StateStore:
    """JSON snapshot of per-cluster sizing state and the transition ledger.

    Keeps debounce clocks and the rate-limit window across restarts. A missing
    path disables persistence.
    """

    def __init__(self, path: Optional[str]):
        self.path = path

    def load(self) -> Tuple[Dict[str, ClusterSizingState], List[TransitionRecord]]:
        if not self.path or not os.path.exists(self.path):
            return {}, []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw: Dict[str, Any] = json.load(f)
            states = {cid: ClusterSizingState.model_validate(s) for cid, s in raw.get('clusters', {}).items()}
            ledger = [TransitionRecord.model_validate(r) for r in raw.get('ledger', [])]
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("sizing.state.unreadable", extra={"path": self.path, "error": str(e)})
            return {}, []
        return states, ledger

    def save(self, states: Dict[str, ClusterSizingState], ledger: List[TransitionRecord]) -> None:
        if not self.path:
            return
        snapshot = {
            'clusters': {cid: s.model_dump(by_alias=True, mode='json') for cid, s in sorted(states.items())},
            'ledger': [r.model_dump(by_alias=True, mode='json') for r in ledger],
        }
        tmp = f"{self.path}.tmp"
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(snapshot, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)
