"""Registration engine — bundle building, verdict classification, phase control."""

from ensbundler.engine.bundle_builder import BundleBuilder
from ensbundler.engine.inclusion_tracker import InclusionTracker
from ensbundler.engine.phase_controller import PhaseController, RegistrationHalted

__all__ = ["BundleBuilder", "InclusionTracker", "PhaseController", "RegistrationHalted"]
