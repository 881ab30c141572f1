from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any, Callable

from vilm.ids import new_asset_id
from vilm.util.time import now_iso

ACTOR_PREFIX = "actor:"
ACTION_PREFIX = "tag:"


class ReviewStatus(str, Enum):
    UNREVIEWED = "unreviewed"
    REVIEWED = "reviewed"


@dataclass(slots=True)
class Asset:
    relative_path: str
    file_name: str
    id: str = field(default_factory=new_asset_id)
    status: ReviewStatus = ReviewStatus.UNREVIEWED
    created_at: str = field(default_factory=now_iso)
    tags: list[str] = field(default_factory=list)

    @property
    def actors(self) -> list[str]:
        return sorted(t[len(ACTOR_PREFIX) :] for t in self.tags if t.startswith(ACTOR_PREFIX))

    @property
    def actions(self) -> list[str]:
        return sorted(t[len(ACTION_PREFIX) :] for t in self.tags if t.startswith(ACTION_PREFIX))


def actor_tag(name: str) -> str:
    return f"{ACTOR_PREFIX}{name.strip()}"


def action_tag(name: str) -> str:
    return f"{ACTION_PREFIX}{name.strip()}"


def encode_tags(tags: list[str]) -> str:
    return json.dumps(list(tags), ensure_ascii=False)


# Tag decoding. The tags column has held three shapes over time; each
# decoder returns None when its shape does not match so the next one runs.


def _string_list(value: Any) -> list[str] | None:
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    return None


def decode_tags_from_list(raw: Any) -> list[str] | None:
    return _string_list(raw)


def decode_tags_from_json_array(raw: Any) -> list[str] | None:
    if not isinstance(raw, (str, bytes)):
        return None
    try:
        value = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    return _string_list(value)


def decode_tags_from_json_string(raw: Any) -> list[str] | None:
    """Legacy rows stored the encoded array itself as a JSON string."""
    if not isinstance(raw, (str, bytes)):
        return None
    try:
        inner = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    if not isinstance(inner, str):
        return None
    return decode_tags_from_json_array(inner)


TAG_DECODERS: tuple[Callable[[Any], list[str] | None], ...] = (
    decode_tags_from_list,
    decode_tags_from_json_array,
    decode_tags_from_json_string,
)


def decode_tags(raw: Any) -> list[str]:
    for decoder in TAG_DECODERS:
        tags = decoder(raw)
        if tags is not None:
            return tags
    return []
