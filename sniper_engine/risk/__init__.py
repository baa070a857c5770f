# Risk controls
from .admission import AdmissionController, AdmissionDecision, DenyReason

__all__ = ["AdmissionController", "AdmissionDecision", "DenyReason"]
