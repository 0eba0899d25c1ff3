"""Reasoning layers in escalation order."""
from __future__ import annotations

from escalade.layers.base import ReasoningLayer
from escalade.layers.deep import DeepLayer
from escalade.layers.fast import FastLayer
from escalade.layers.verification import VerificationLayer
from escalade.types import LayerType

LAYER_TYPES = {
    LayerType.FAST: FastLayer,
    LayerType.DEEP: DeepLayer,
    LayerType.VERIFICATION: VerificationLayer,
}

__all__ = ["ReasoningLayer", "FastLayer", "DeepLayer", "VerificationLayer", "LAYER_TYPES"]
