"""Typing indicator state.

There is no server-side timeout: a user stays "typing" until their client
says otherwise or the connection goes away. Clients re-assert ``true`` while
keys are pressed and send ``false`` after a short idle period.
"""
from typing import Dict, List


class TypingTracker:
    """Tracks which connections last reported that they are typing.

    State is kept per connection so that two connections sharing a display
    name do not clear each other; :meth:`is_typing` answers per name.
    """

    def __init__(self) -> None:
        self._typing: Dict[str, str] = {}

    def set(self, connection_id: str, username: str, is_typing: bool) -> None:
        if is_typing:
            self._typing[connection_id] = username
        else:
            self._typing.pop(connection_id, None)

    def clear(self, connection_id: str) -> bool:
        return self._typing.pop(connection_id, None) is not None

    def is_typing(self, username: str) -> bool:
        return username in self._typing.values()

    def typing_names(self) -> List[str]:
        return list(dict.fromkeys(self._typing.values()))

    def reset(self) -> None:
        self._typing.clear()
