"""
Payer identity for PIX charges.

Mercado Pago requires payer.email for PIX. Customers are not asked for one,
so a deterministic address is synthesised from first name and phone:
    firstname.phonedigits@<fallback domain>
"""

import re
import time
import unicodedata
from typing import Any

DEFAULT_LAST_NAME = "Cliente"
DEFAULT_CPF = "00000000000"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_DIGIT = re.compile(r"\D")


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).strip()


def digits_only(value: Any) -> str:
    return _NON_DIGIT.sub("", str(value or ""))


def _first(*candidates: Any) -> str:
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return ""


def _customer(order_data: dict | None) -> dict:
    if not isinstance(order_data, dict):
        return {}
    customer = order_data.get("customer")
    return customer if isinstance(customer, dict) else {}


def build_payer(
    payer: dict | None,
    order_data: dict | None,
    fallback_domain: str,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """
    Build the payer block of a PIX charge.

    Name and phone are looked up in the explicit payer first, then in
    orderData.customer. A real payer email always wins over the synthesised one.
    The CPF prefers orderData.customer.cpf, then payer.identification.number.
    """
    payer = payer or {}
    customer = _customer(order_data)
    identification = payer.get("identification") or {}

    raw_name = _first(
        payer.get("first_name"),
        payer.get("name"),
        customer.get("name"),
        customer.get("fullName"),
    )
    raw_phone = _first(
        payer.get("phone"),
        payer.get("phone_number"),
        customer.get("phone"),
    )

    name_parts = strip_accents(raw_name).split()
    first_name = name_parts[0] if name_parts else ""
    last_name = " ".join(name_parts[1:]) if len(name_parts) > 1 else DEFAULT_LAST_NAME

    phone_digits = digits_only(raw_phone)
    if not phone_digits:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        phone_digits = str(now_ms)[-9:]

    local_name = _NON_ALNUM.sub("", strip_accents(first_name).lower()) or "cliente"
    synthetic_email = f"{local_name}.{phone_digits}@{fallback_domain}"

    if customer.get("cpf"):
        cpf = digits_only(customer["cpf"])
    elif identification.get("number"):
        cpf = digits_only(identification["number"])
    else:
        cpf = DEFAULT_CPF

    return {
        "first_name": first_name or DEFAULT_LAST_NAME,
        "last_name": last_name or DEFAULT_LAST_NAME,
        "email": payer.get("email") or synthetic_email,
        "identification": {
            "type": identification.get("type") or "CPF",
            "number": cpf or DEFAULT_CPF,
        },
    }
