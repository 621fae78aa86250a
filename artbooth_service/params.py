"""
Typed parameter records for each transformation kind.

Callers (the kiosk settings screen, the HTTP API) hand over a flat mapping of
parameter name -> number. `resolve_params` merges that mapping onto the
kind's default record so a Job carries a frozen snapshot of exactly the
values it will run with. Keys are accepted in the camelCase wire form
(`edgeStrength`) or snake_case (`edge_strength`); unknown keys are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
import logging
import re
from typing import Any, Dict, Mapping, Optional, Type, Union

logger = logging.getLogger(__name__)


class TransformationKind(str, Enum):
    PENCIL = "pencil"
    WATERCOLOR = "watercolor"
    OILPAINTING = "oilpainting"

    @classmethod
    def parse(cls, value: Union[str, "TransformationKind"]) -> Optional["TransformationKind"]:
        """Return the matching kind or None for anything unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class _ParamsBase:
    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]] = None):
        defaults = cls()
        if not overrides:
            return defaults
        known = {f.name for f in fields(cls)}
        updates: Dict[str, float] = {}
        for key, value in overrides.items():
            name = _to_snake(str(key))
            if name not in known or value is None:
                continue
            try:
                updates[name] = float(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Parameter '{key}' must be numeric, got {value!r}") from exc
        return replace(defaults, **updates)

    def as_dict(self) -> Dict[str, float]:
        return {_to_camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class PencilParams(_ParamsBase):
    edge_strength: float = 0.95  # line darkness multiplier
    line_weight: float = 1.5
    background_whiteness: float = 0.98  # 1.0 paints everything white
    noise_reduction: float = 3.0  # neighbourhood radius
    edge_threshold: float = 8.0  # on the 0-255 scale
    min_line_intensity: float = 0.1
    max_line_intensity: float = 0.85


@dataclass(frozen=True)
class WatercolorParams(_ParamsBase):
    blur_radius: float = 3.0
    color_reduction_factor: float = 32.0


@dataclass(frozen=True)
class OilPaintingParams(_ParamsBase):
    oil_radius: float = 2.0
    oil_intensity: float = 20.0  # number of intensity bins


TransformationParams = Union[PencilParams, WatercolorParams, OilPaintingParams]

PARAMS_BY_KIND: Dict[TransformationKind, Type[_ParamsBase]] = {
    TransformationKind.PENCIL: PencilParams,
    TransformationKind.WATERCOLOR: WatercolorParams,
    TransformationKind.OILPAINTING: OilPaintingParams,
}


def default_params(kind: TransformationKind) -> TransformationParams:
    return PARAMS_BY_KIND[kind]()


def resolve_params(
    kind: TransformationKind,
    overrides: Union[None, Mapping[str, Any], TransformationParams] = None,
) -> TransformationParams:
    """Merge overrides onto the kind's defaults and return a frozen record."""
    params_cls = PARAMS_BY_KIND[kind]
    if isinstance(overrides, params_cls):
        return overrides
    if isinstance(overrides, _ParamsBase):
        # A record for another kind: only shared names would carry over, and there are none.
        logger.debug("Ignoring %s passed for kind %s", type(overrides).__name__, kind.value)
        return default_params(kind)
    return params_cls.from_mapping(overrides)
