"""Token usage counters.

There are two ways to combine usage and they must not be confused:

* :func:`merge` adds counters field by field.  Use it to total
  independent responses.
* :func:`replace_cumulative` lets a report overwrite the counters it
  carries.  The streaming protocol reports running totals, so a
  ``message_delta`` usage supersedes what came before.
"""

from pydantic import BaseModel, Field, StrictInt, model_validator

COUNTERS = (
    "input_tokens",
    "output_tokens",
    "cache_creation_input_tokens",
    "cache_read_input_tokens",
)


class Usage(BaseModel):
    input_tokens: StrictInt = Field(default=0, ge=0)
    output_tokens: StrictInt = Field(default=0, ge=0)
    cache_creation_input_tokens: StrictInt = Field(default=0, ge=0)
    cache_read_input_tokens: StrictInt = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        # null counters count as "not reported"
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def total(self) -> int:
        return sum(getattr(self, name) for name in COUNTERS)


def zero() -> Usage:
    return Usage()


def merge(a: Usage, b: Usage) -> Usage:
    """Field-wise sum of two usage values."""
    return Usage(
        input_tokens=a.input_tokens + b.input_tokens,
        output_tokens=a.output_tokens + b.output_tokens,
        cache_creation_input_tokens=(
            a.cache_creation_input_tokens + b.cache_creation_input_tokens
        ),
        cache_read_input_tokens=(
            a.cache_read_input_tokens + b.cache_read_input_tokens
        ),
    )


def replace_cumulative(running: Usage, incoming: Usage) -> Usage:
    """Overwrite *running* with every counter *incoming* reported.

    Counters absent from *incoming* (not present in the decoded
    payload) keep their running value.
    """
    updated = running.model_dump()
    for name in incoming.model_fields_set & set(COUNTERS):
        updated[name] = getattr(incoming, name)
    return Usage(**updated)
