"""Per-client player identity kept in a small JSON state file."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Dict, Union

logger = logging.getLogger(__name__)

PLAYER_ID_KEY = "player_id"


def _read_state(path: Path) -> Dict[str, object]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable state file %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def get_or_create_id(path: Union[str, Path]) -> str:
    """Return the stored player id, generating and persisting one on first use.

    The id is only ever compared against a room's player slots, so a random
    UUID4 is enough; collisions are not guarded against.
    """

    path = Path(path)
    state = _read_state(path)
    player_id = state.get(PLAYER_ID_KEY)
    if isinstance(player_id, str) and player_id:
        return player_id

    player_id = str(uuid.uuid4())
    state[PLAYER_ID_KEY] = player_id
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(state, fh, indent=2)
    logger.info("Created player id %s", player_id)
    return player_id
