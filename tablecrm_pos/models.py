from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional


def _str_or_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    return str(v)


def to_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _blank(v: Optional[str]) -> bool:
    return v is None or not str(v).strip()


def option_label(entity: Any) -> str:
    name = getattr(entity, "name", None)
    if not _blank(name):
        return str(name)
    return f"ID: {entity.id}"


@dataclass
class Contragent:
    id: str
    name: str = ""
    phone: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Contragent":
        return cls(id=str(d["id"]), name=str(d.get("name") or ""), phone=_str_or_none(d.get("phone")))


@dataclass
class Warehouse:
    id: str
    name: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Warehouse":
        return cls(id=str(d["id"]), name=str(d.get("name") or ""))


@dataclass
class Paybox:
    id: str
    name: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Paybox":
        return cls(id=str(d["id"]), name=str(d.get("name") or ""))


@dataclass
class Organization:
    id: str
    type: Optional[str] = None
    short_name: Optional[str] = None
    full_name: Optional[str] = None
    work_name: Optional[str] = None
    prefix: Optional[str] = None
    inn: Optional[str] = None
    kpp: Optional[str] = None
    okved: Optional[str] = None
    okved2: Optional[str] = None
    okpo: Optional[str] = None
    ogrn: Optional[str] = None
    org_type: Optional[str] = None
    tax_type: Optional[str] = None
    tax_percent: Optional[float] = None
    registration_date: Optional[int] = None
    updated_at: Optional[int] = None
    created_at: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Organization":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in d.items() if k in known}
        data["id"] = str(d["id"])
        return cls(**data)

    @property
    def label(self) -> str:
        for v in (self.work_name, self.short_name, self.full_name, self.type):
            if not _blank(v):
                return str(v)
        return f"ID: {self.id}"


@dataclass
class PriceType:
    id: str
    name: str = ""
    currency: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PriceType":
        return cls(id=str(d["id"]), name=str(d.get("name") or ""), currency=_str_or_none(d.get("currency")))


@dataclass
class Product:
    id: str
    name: str = ""
    sku: Optional[str] = None
    price: Optional[float] = None
    rest: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Product":
        return cls(
            id=str(d["id"]),
            name=str(d.get("name") or ""),
            sku=_str_or_none(d.get("sku")),
            price=to_float(d.get("price")),
            rest=to_float(d.get("rest")),
        )


@dataclass
class CartItem:
    id: str
    name: str
    sku: Optional[str]
    price: Optional[float]
    rest: Optional[float] = None
    quantity: int = 1
    discount: float = 0.0

    @classmethod
    def from_product(cls, product: Product) -> "CartItem":
        return cls(
            id=product.id,
            name=product.name,
            sku=product.sku,
            price=product.price,
            rest=product.rest,
        )

    @property
    def line_total(self) -> float:
        return self.quantity * (self.price or 0.0) * (1 - self.discount / 100)


@dataclass
class OrderProductInput:
    product_id: str
    quantity: int
    price: float
    discount: float = 0.0


@dataclass
class OrderPayload:
    token: str
    client_id: str
    organization_id: str
    warehouse_id: str
    paybox_id: str
    price_type_id: str
    mode: str
    products: List[OrderProductInput] = field(default_factory=list)
    comment: str = ""


def parse_entities(items: List[Any], model) -> list:
    """Список сырых словарей -> список моделей. Записи без id отбрасываются."""
    out = []
    for raw in items:
        if not isinstance(raw, dict):
            continue
        if raw.get("id") is None or str(raw.get("id")) == "":
            continue
        out.append(model.from_dict(raw))
    return out
