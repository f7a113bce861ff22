"""
Flow modules - one per business flow
"""
from mobility_hub.state_machine.flows.base import BaseFlow
from mobility_hub.state_machine.flows.insurance import InsuranceFlow
from mobility_hub.state_machine.flows.nearby import NearbyFlow
from mobility_hub.state_machine.flows.qr import QRFlow
from mobility_hub.state_machine.flows.registration import RegistrationFlow
from mobility_hub.state_machine.flows.trips import TripsFlow

__all__ = [
    "BaseFlow",
    "InsuranceFlow",
    "NearbyFlow",
    "QRFlow",
    "RegistrationFlow",
    "TripsFlow",
]
