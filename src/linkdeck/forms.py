"""Form models validated by the view before any handler is called.

A :class:`pydantic.ValidationError` raised here never reaches the sync
engine; views show :func:`error_messages` inline next to the form.
"""

from typing import Annotated

from pydantic import (
    AfterValidator,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

MIN_PASSWORD_LENGTH = 6

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _check_http_url(value: str) -> str:
    """Reject anything but an absolute http(s) URL, returning the text as typed."""
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError as e:
        raise ValueError(e.errors()[0]["msg"]) from None
    return value


HttpUrlText = Annotated[str, AfterValidator(_check_http_url)]


class GroupForm(BaseModel):
    """Add/edit group form."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    sort_order: int = Field(default=0, ge=0)


class LinkForm(BaseModel):
    """Add/edit link form. The owning group is chosen by the view."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    url: HttpUrlText
    sort_order: int = Field(default=0, ge=0)

    @property
    def url_text(self) -> str:
        return self.url


class PasswordForm(BaseModel):
    """Change password form."""

    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    confirm_password: str = Field(min_length=1)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordForm":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


def error_messages(error: ValidationError) -> list[str]:
    """Flatten a validation error into ``"field: message"`` lines."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "Invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return messages
