"""Pydantic contract for the structured answer the language model returns.

The same models are used to render the JSON example in the prompt and to
validate the model's output, so field names live in exactly one place.
"""

from typing import Optional, get_args, get_origin

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ContractModel(BaseModel):
    """Base for contract models: camelCase on the wire, no type coercion."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=True,
    )


class AnswerParagraph(ContractModel):
    content: str = Field(examples=["Paragraph text"])
    context_ids: Optional[list[str]] = Field(
        None, examples=[["ctx-id-1", "ctx-id-2"]]
    )

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class ExternalReference(ContractModel):
    title: str = Field(examples=["Title of the related paper"])
    url: Optional[str] = Field(None, examples=["https://..."])
    summary: Optional[str] = Field(
        None, examples=["Summary of the paper and why it is relevant"]
    )
    authors: Optional[str] = Field(None, examples=["Author names"])
    relation: Optional[str] = Field(
        None, examples=["How the paper relates to the answer"]
    )


class ModelAnswer(ContractModel):
    paragraphs: list[AnswerParagraph] = Field(default_factory=list)
    external_references: list[ExternalReference] = Field(default_factory=list)
    followups: list[str] = Field(
        default_factory=list,
        examples=[["Question or task worth investigating next"]],
    )


def wire_name(model: type[BaseModel], field_name: str) -> str:
    """Return the JSON key used for ``field_name`` on ``model``."""
    field = model.model_fields[field_name]
    return field.alias or field_name


def _nested_model(annotation) -> Optional[type[BaseModel]]:
    for arg in get_args(annotation):
        if get_origin(arg) is None and isinstance(arg, type) and issubclass(arg, BaseModel):
            return arg
    return None


def example_for(model: type[BaseModel]) -> dict:
    """Build an example object for ``model`` from its field examples."""
    example = {}
    for name, field in model.model_fields.items():
        nested = _nested_model(field.annotation)
        if nested is not None:
            example[wire_name(model, name)] = [example_for(nested)]
        elif field.examples:
            example[wire_name(model, name)] = field.examples[0]
    return example
