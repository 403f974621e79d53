"""
Model base classes shared by every schema module.

Two flavours, differing only in how unknown keys are treated:
- StrictModel: values this package builds (summaries, events, outbound frames)
- PermissiveModel: values the Claude CLI writes (inbound frames, tool inputs)
"""

from __future__ import annotations

import pydantic

# ==============================================================================
# Strict Model
# ==============================================================================


class StrictModel(pydantic.BaseModel):
    """
    Immutable, strictly typed, closed to unknown keys.

    A misspelled constructor keyword raises instead of vanishing.
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',
        strict=True,  # No str -> int style coercion
        frozen=True,
    )


# ==============================================================================
# Permissive Model
# ==============================================================================


class PermissiveModel(pydantic.BaseModel):
    """
    Immutable and strictly typed for declared fields, open to everything else.

    CLI releases add keys to frames and tool inputs without notice; declaring
    only the consumed fields keeps older monitors validating newer output.
    """

    model_config = pydantic.ConfigDict(
        extra='allow',
        strict=True,
        frozen=True,
    )
