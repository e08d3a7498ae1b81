"""
Stage outcomes for the layer pipeline

A gating stage either lets evaluation continue with its result or halts
it with a reason. Only the writer ratio gate halts today.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from seven_layer_system.layers.writer_ratio import WriterRatioResult

WRITER_RATIO_FAILED = "WRITER_RATIO_FAILED"


@dataclass(frozen=True)
class Continue:
    result: Any


@dataclass(frozen=True)
class Halt:
    result: Any
    reason: str
    warning: Optional[str] = None


StageOutcome = Union[Continue, Halt]


def writer_ratio_stage(result: WriterRatioResult) -> StageOutcome:
    """Halt the pipeline when the writer ratio gate fails"""
    if result.writer_ratio_passed:
        return Continue(result)
    return Halt(result=result, reason=WRITER_RATIO_FAILED, warning=result.warning)
