from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple


@dataclass
class NormalizedList:
    items: List[Any] = field(default_factory=list)
    meta: Any = None

    @property
    def total(self) -> Optional[float]:
        if isinstance(self.meta, dict):
            t = self.meta.get("total")
            if _is_number(t):
                return t
        return None


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _list_field(payload: Any, key: str) -> Optional[list]:
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    return None


def _meta_or_count(payload: dict) -> Any:
    meta = payload.get("meta")
    if meta is not None:
        return meta
    count = payload.get("count")
    if _is_number(count):
        return {"total": count}
    return None


def match_bare_list(payload: Any) -> Optional[NormalizedList]:
    if isinstance(payload, list):
        return NormalizedList(items=payload)
    return None


def match_data(payload: Any) -> Optional[NormalizedList]:
    items = _list_field(payload, "data")
    if items is None:
        return None
    return NormalizedList(items=items, meta=payload.get("meta"))


def match_results(payload: Any) -> Optional[NormalizedList]:
    items = _list_field(payload, "results")
    if items is None:
        return None
    return NormalizedList(items=items, meta=_meta_or_count(payload))


def match_result(payload: Any) -> Optional[NormalizedList]:
    items = _list_field(payload, "result")
    if items is None:
        return None
    return NormalizedList(items=items, meta=_meta_or_count(payload))


def match_items(payload: Any) -> Optional[NormalizedList]:
    items = _list_field(payload, "items")
    if items is None:
        return None
    return NormalizedList(items=items, meta=payload.get("meta"))


# порядок важен: первый совпавший формат побеждает
LIST_SHAPES: Tuple[Callable[[Any], Optional[NormalizedList]], ...] = (
    match_bare_list,
    match_data,
    match_results,
    match_result,
    match_items,
)


def normalize_list_response(payload: Any) -> NormalizedList:
    """
    Приводит ответ API со списком к одному виду.

    Конверт ответа TableCRM отличается от эндпоинта к эндпоинту:
    голый массив, {data}, {results, count}, {result}, {items}.
    Неизвестный формат -> пустой список.
    """
    for match in LIST_SHAPES:
        found = match(payload)
        if found is not None:
            return found
    return NormalizedList()
