from __future__ import annotations

import re
from typing import Any, Iterable

from .errors import ValidationError


# Korean mobile/landline numbers after stripping separators
PHONE_PATTERN = re.compile(r"^(0[0-9]{1,2}|1[0-9]{3})[0-9]{6,8}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_PAGE_SIZE = 500


def normalize_phone(phone: Any) -> str:
    """Digits-only canonical phone form."""
    if phone is None:
        return ""
    return re.sub(r"[^0-9]", "", str(phone))


class Payload:
    """
    Field-by-field reader for a JSON request body.

    Each reader records a problem instead of raising, so a single
    ValidationError can report every bad field at once:

        p = Payload(request.get_json(silent=True))
        ids = p.int_list("customerIds")
        to_user = p.integer("toUserId")
        p.finish()
    """

    def __init__(self, data: Any):
        if data is None:
            data = {}
        self.errors: dict[str, str] = {}
        if not isinstance(data, dict):
            self.errors["_body"] = "JSON object expected"
            data = {}
        self.data = data

    def _fail(self, field: str, message: str) -> None:
        self.errors.setdefault(field, message)

    def has(self, field: str) -> bool:
        return field in self.data and self.data[field] is not None

    def text(self, field: str, *, required: bool = True, max_length: int | None = None,
            min_length: int = 1) -> str | None:
        raw = self.data.get(field)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            if required:
                self._fail(field, f"{field} is required")
            return None
        if not isinstance(raw, (str, int)) or isinstance(raw, bool):
            self._fail(field, f"{field} must be a string")
            return None
        value = str(raw).strip()
        if len(value) < min_length:
            self._fail(field, f"{field} must be at least {min_length} characters")
            return None
        if max_length and len(value) > max_length:
            self._fail(field, f"{field} exceeds max length {max_length}")
            return None
        return value

    def integer(self, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
        raw = self.data.get(field)
        if raw is None or raw == "":
            if required:
                self._fail(field, f"{field} is required")
            return None
        value = _coerce_int(raw)
        if value is None:
            self._fail(field, f"{field} must be an integer")
            return None
        if minimum is not None and value < minimum:
            self._fail(field, f"{field} must be >= {minimum}")
            return None
        return value

    def int_list(self, field: str, *, required: bool = True, max_items: int | None = None) -> list[int] | None:
        raw = self.data.get(field)
        if raw is None:
            if required:
                self._fail(field, f"{field} is required")
            return None
        if not isinstance(raw, list):
            self._fail(field, f"{field} must be a list of integers")
            return None
        if required and not raw:
            self._fail(field, f"{field} must contain at least one id")
            return None
        if max_items is not None and len(raw) > max_items:
            self._fail(field, f"{field} accepts at most {max_items} ids")
            return None
        values: list[int] = []
        for item in raw:
            value = _coerce_int(item)
            if value is None:
                self._fail(field, f"{field} must be a list of integers")
                return None
            if value not in values:
                values.append(value)
        return values

    def flag(self, field: str, *, required: bool = False, default: bool | None = None) -> bool | None:
        raw = self.data.get(field)
        if raw is None:
            if required:
                self._fail(field, f"{field} is required")
            return default
        if not isinstance(raw, bool):
            self._fail(field, f"{field} must be a boolean")
            return default
        return raw

    def choice(self, field: str, choices: Iterable[str], *, required: bool = True) -> str | None:
        allowed = list(choices)
        value = self.text(field, required=required)
        if value is None:
            return None
        if value not in allowed:
            self._fail(field, f"{field} must be one of: {', '.join(allowed)}")
            return None
        return value

    def phone(self, field: str = "phone", *, required: bool = True) -> str | None:
        raw = self.text(field, required=required)
        if raw is None:
            return None
        normalized = normalize_phone(raw)
        if not PHONE_PATTERN.match(normalized):
            self._fail(field, "유효한 전화번호를 입력해주세요")
            return None
        return normalized

    def email(self, field: str = "email", *, required: bool = False) -> str | None:
        value = self.text(field, required=required, max_length=255)
        if value is None:
            return None
        if not EMAIL_PATTERN.match(value):
            self._fail(field, "유효한 이메일을 입력해주세요")
            return None
        return value

    def finish(self, message: str | None = None) -> None:
        """Raise one ValidationError for everything collected; `message` replaces the summary."""
        if self.errors:
            summary = ", ".join(f"{k}: {v}" for k, v in self.errors.items())
            raise ValidationError(message or f"입력값 검증 실패: {summary}", details=dict(self.errors))


def _coerce_int(raw: Any) -> int | None:
    # bool is an int subclass; reject it along with floats and scientific notation
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        stripped = raw.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    return None


def page_args(args, *, default_limit: int = 20) -> tuple[int, int]:
    """Read ?page=&limit= from a query string, clamped to sane bounds."""
    page = args.get("page", default=1, type=int) or 1
    limit = args.get("limit", default=default_limit, type=int) or default_limit
    return max(1, page), max(1, min(limit, MAX_PAGE_SIZE))


def pagination_meta(page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit if total > 0 else 0
    return {"page": page, "limit": limit, "total": total, "totalPages": total_pages}
