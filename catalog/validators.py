"""Form rules for each entity kind, reported as ordered per-field errors."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, NoReturn, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from catalog.database import is_valid_id
from catalog.errors import ValidationFailed
from catalog.models import STATUSES

NAME_MAX_LENGTH = 100
GENRE_MIN_LENGTH = 3

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


def _fail(message: str) -> NoReturn:
    raise PydanticCustomError("field_error", message)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _required(value: Any, message: str) -> str:
    text = _text(value)
    if not text:
        _fail(message)
    return text


def _person_name(value: Any, label: str) -> str:
    text = _required(value, f"{label} must be specified")
    if len(text) > NAME_MAX_LENGTH:
        _fail(f"{label} must be at most {NAME_MAX_LENGTH} characters")
    # ASCII letters and digits only, as in the en-US alphanumeric rule.
    if not (text.isascii() and text.isalnum()):
        _fail(f"{label} contains non-alphanumeric characters")
    return text


def _optional_date(value: Any, message: str) -> Optional[date]:
    if isinstance(value, date):
        return value
    text = _text(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        _fail(message)


def _reference(value: Any, empty_message: str, invalid_message: str) -> str:
    text = _required(value, empty_message)
    if not is_valid_id(text):
        _fail(invalid_message)
    return text.lower()


class _Form(BaseModel):
    # Validators also run on defaults so an absent field reports its own message.
    model_config = ConfigDict(validate_default=True)


class AuthorForm(_Form):
    first_name: str = ""
    family_name: str = ""
    date_of_birth: Optional[date] = None
    date_of_death: Optional[date] = None

    @field_validator("first_name", mode="before")
    @classmethod
    def _first_name(cls, value: Any) -> str:
        return _person_name(value, "First name")

    @field_validator("family_name", mode="before")
    @classmethod
    def _family_name(cls, value: Any) -> str:
        return _person_name(value, "Family name")

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _date_of_birth(cls, value: Any) -> Optional[date]:
        return _optional_date(value, "Invalid date of birth")

    @field_validator("date_of_death", mode="before")
    @classmethod
    def _date_of_death(cls, value: Any) -> Optional[date]:
        return _optional_date(value, "Invalid date of death")


class GenreForm(_Form):
    name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        text = _text(value)
        if len(text) < GENRE_MIN_LENGTH:
            _fail(f"Genre name must contain at least {GENRE_MIN_LENGTH} characters")
        if len(text) > NAME_MAX_LENGTH:
            _fail(f"Genre name must be at most {NAME_MAX_LENGTH} characters")
        return text


class BookForm(_Form):
    title: str = ""
    author: str = ""
    summary: str = ""
    isbn: str = ""
    genre: List[str] = []

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value: Any) -> str:
        return _required(value, "Title must not be empty.")

    @field_validator("author", mode="before")
    @classmethod
    def _author(cls, value: Any) -> str:
        return _reference(value, "Author must not be empty.", "Author must be chosen from the list.")

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, value: Any) -> str:
        return _required(value, "Summary must not be empty.")

    @field_validator("isbn", mode="before")
    @classmethod
    def _isbn(cls, value: Any) -> str:
        return _required(value, "ISBN must not be empty.")

    @field_validator("genre", mode="before")
    @classmethod
    def _genre(cls, value: Any) -> List[str]:
        selected = [_text(v) for v in value or []]
        if any(not is_valid_id(v) for v in selected):
            _fail("Invalid genre selection.")
        return [v.lower() for v in selected]


class BookInstanceForm(_Form):
    book: str = ""
    imprint: str = ""
    status: str = ""
    due_back: Optional[date] = None

    @field_validator("book", mode="before")
    @classmethod
    def _book(cls, value: Any) -> str:
        return _reference(value, "Book must be specified", "Book must be chosen from the list.")

    @field_validator("imprint", mode="before")
    @classmethod
    def _imprint(cls, value: Any) -> str:
        return _required(value, "Imprint must be specified")

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        text = _text(value)
        if text not in STATUSES:
            _fail(f"Status must be one of: {', '.join(STATUSES)}")
        return text

    @field_validator("due_back", mode="before")
    @classmethod
    def _due_back(cls, value: Any) -> Optional[date]:
        return _optional_date(value, "Invalid date")


def validate_form(form_cls: Type[M], values: Dict[str, Any]) -> Tuple[Optional[M], List[FieldError]]:
    """Run the field rules; errors come back in field declaration order."""
    try:
        return form_cls.model_validate(values), []
    except ValidationError as exc:
        errors = [
            FieldError(field=str(err["loc"][0]) if err["loc"] else "", message=err["msg"])
            for err in exc.errors()
        ]
        return None, errors


def check_form(form_cls: Type[M], values: Dict[str, Any]) -> M:
    """Like ``validate_form`` but raises ``ValidationFailed`` on any error."""
    model, errors = validate_form(form_cls, values)
    if errors:
        raise ValidationFailed(errors)
    return model
