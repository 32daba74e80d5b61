import base64
import itertools

import numpy as np

_event_ids = itertools.count()


def make_event(type_: str, **payload) -> dict:
    """A server event as it would be decoded from the wire."""
    return {"event_id": f"evt_test{next(_event_ids)}", "type": type_, **payload}


def pcm_b64(samples) -> str:
    return base64.b64encode(np.asarray(samples, dtype="<i2").tobytes()).decode()


def user_message(item_id: str, text: str = "hi") -> dict:
    return {"id": item_id, "type": "message", "role": "user", "content": [{"type": "input_text", "text": text}]}


def assistant_message(item_id: str, content: list | None = None) -> dict:
    return {"id": item_id, "type": "message", "role": "assistant", "content": content or []}
