from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import urlencode


@dataclass(frozen=True)
class Closed:
    kind = 'closed'


@dataclass(frozen=True)
class Editing:
    """Form open for ``item``; ``None`` means a new record."""

    item: Any = None
    kind = 'editing'


@dataclass(frozen=True)
class ConfirmingDelete:
    item: Any
    kind = 'confirm-delete'


@dataclass(frozen=True)
class MovingStock:
    item: Any
    kind = 'move-stock'


@dataclass(frozen=True)
class RecordingPayment:
    item: Any
    kind = 'payment'


ViewState = Union[Closed, Editing, ConfirmingDelete, MovingStock, RecordingPayment]

_BY_KIND = {cls.kind: cls for cls in (Editing, ConfirmingDelete, MovingStock, RecordingPayment)}


def parse_view_state(
    params: Mapping[str, str],
    loader: Callable[[int], Any],
    *,
    allowed: Iterable[str] | None = None,
) -> ViewState:
    """Read ``?view=<kind>&id=<id>`` into exactly one screen state.

    Unknown kinds, kinds the screen does not offer, and ids the loader
    cannot resolve all collapse to ``Closed``.
    """
    kind = (params.get('view') or '').strip()
    cls = _BY_KIND.get(kind)
    if cls is None or (allowed is not None and kind not in set(allowed)):
        return Closed()

    raw_id = (params.get('id') or '').strip()
    if not raw_id:
        return Editing() if cls is Editing else Closed()
    try:
        item = loader(int(raw_id))
    except (ValueError, LookupError):
        return Closed()
    return cls(item)


def view_url(path: str, state: ViewState, **params) -> str:
    query = {key: value for key, value in params.items() if value not in (None, '')}
    if not isinstance(state, Closed):
        query['view'] = state.kind
        item_id = getattr(state.item, 'id', None)
        if item_id is not None:
            query['id'] = item_id
    return f'{path}?{urlencode(query)}' if query else path
