"""
FormStock Service — Custom question schema and typed answers

Owners attach custom questions to a form; respondents answer them. Answers
are a tagged union on ``type`` and are checked against the form's question
definitions before a response is stored.
"""
import re
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, EmailStr, Field, TypeAdapter, field_validator, model_validator

from formstock.core.errors import ValidationError

QuestionType = Literal["text", "textarea", "select", "radio", "checkbox", "number", "email", "phone"]

CHOICE_TYPES = {"select", "radio", "checkbox"}


class QuestionValidation(BaseModel):
    min: float | None = None
    max: float | None = None
    pattern: str | None = None

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid pattern: {exc}") from exc
        return value


class CustomQuestion(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: QuestionType = "text"
    label: str = Field(..., min_length=1, max_length=500)
    placeholder: str | None = None
    required: bool = False
    options: list[str] = Field(default_factory=list)
    validation: QuestionValidation | None = None

    @model_validator(mode="after")
    def _options_match_type(self):
        if self.type in CHOICE_TYPES and not self.options:
            raise ValueError(f"question '{self.label}' of type {self.type} needs options")
        return self


# ─── Answers (tagged union on `type`) ─────────────────────────────────────────

class TextAnswer(BaseModel):
    question_id: str
    type: Literal["text", "textarea", "phone"]
    value: str = Field(..., max_length=5000)


class EmailAnswer(BaseModel):
    question_id: str
    type: Literal["email"]
    value: EmailStr


class NumberAnswer(BaseModel):
    question_id: str
    type: Literal["number"]
    value: float


class ChoiceAnswer(BaseModel):
    question_id: str
    type: Literal["select", "radio"]
    value: str


class MultiChoiceAnswer(BaseModel):
    question_id: str
    type: Literal["checkbox"]
    value: list[str]


Answer = Annotated[
    Union[TextAnswer, EmailAnswer, NumberAnswer, ChoiceAnswer, MultiChoiceAnswer],
    Field(discriminator="type"),
]

_questions_adapter = TypeAdapter(list[CustomQuestion])


def parse_questions(raw: list[dict[str, Any]] | None) -> list[CustomQuestion]:
    return _questions_adapter.validate_python(raw or [])


def _is_blank(answer) -> bool:
    if isinstance(answer, MultiChoiceAnswer):
        return len(answer.value) == 0
    if isinstance(answer, (TextAnswer, ChoiceAnswer)):
        return not answer.value.strip()
    return False


def validate_answers(questions: list[CustomQuestion], answers: list) -> dict[str, dict[str, Any]]:
    """
    Check answers against the question schema and return the stored shape
    ``{question_id: {"type": ..., "value": ...}}``. Raises ValidationError.
    """
    by_id = {q.id: q for q in questions}
    stored: dict[str, dict[str, Any]] = {}

    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None:
            raise ValidationError(f"Unknown question '{answer.question_id}'.")
        if answer.question_id in stored:
            raise ValidationError(f"Question '{question.label}' answered twice.")
        if answer.type != question.type:
            raise ValidationError(
                f"Question '{question.label}' expects a {question.type} answer, got {answer.type}."
            )
        if _is_blank(answer):
            continue

        rules = question.validation
        if isinstance(answer, ChoiceAnswer) and answer.value not in question.options:
            raise ValidationError(f"'{answer.value}' is not an option of '{question.label}'.")
        if isinstance(answer, MultiChoiceAnswer):
            unknown = [v for v in answer.value if v not in question.options]
            if unknown:
                raise ValidationError(f"{unknown} are not options of '{question.label}'.")
        if isinstance(answer, NumberAnswer) and rules is not None:
            if rules.min is not None and answer.value < rules.min:
                raise ValidationError(f"'{question.label}' must be at least {rules.min}.")
            if rules.max is not None and answer.value > rules.max:
                raise ValidationError(f"'{question.label}' must be at most {rules.max}.")
        if isinstance(answer, (TextAnswer, EmailAnswer)) and rules is not None and rules.pattern:
            if re.fullmatch(rules.pattern, str(answer.value)) is None:
                raise ValidationError(f"'{question.label}' has an invalid format.")

        stored[answer.question_id] = {"type": answer.type, "value": answer.value}

    missing = [q.label for q in questions if q.required and q.id not in stored]
    if missing:
        raise ValidationError(f"Required questions not answered: {', '.join(missing)}.")
    return stored
