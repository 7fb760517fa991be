"""Input readings and prediction results for the fleet models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EngineReading:
    engine_temp: float  # °C
    oil_pressure: float  # PSI
    mileage: float  # km
    vehicle_age: float  # years
    avg_load: float  # 0-1
    engine_hours: float


@dataclass
class BrakeReading:
    brake_usage_intensity: float  # 0-1
    mileage_since_service: float  # km
    avg_load: float  # 0-1
    terrain_type: float  # 0 flat .. 1 mountainous
    last_brake_service: float  # km since last brake service


@dataclass
class BatteryReading:
    voltage: float  # V
    temperature: float  # °C
    battery_age: float  # years
    charge_cycles: float
    avg_draw: float  # 0-1


@dataclass
class TireReading:
    tire_pressure: float  # PSI
    mileage_on_tires: float  # km
    avg_load_weight: float  # 0-1
    terrain_roughness: float  # 0-1
    alignment_score: float  # 0.5-1


@dataclass
class FuelReading:
    avg_speed: float  # km/h
    load_factor: float  # 0-1
    terrain_grade: float  # 0-0.15
    ambient_temp: float  # °C
    tire_condition: float  # 0.5-1
    engine_efficiency: float  # 0.6-1


@dataclass
class VehicleSnapshot:
    """The live readings available for a single vehicle."""

    engine_temp: float
    oil_pressure: float
    mileage: float
    vehicle_age: float
    battery_voltage: float
    tire_pressure: float
    engine_hours: float


@dataclass
class PredictionResult:
    probability: int  # 0-100
    confidence: int  # 0-100
    estimated_time_to_failure: int  # days
    component: str
    severity: str  # low | medium | high | critical
    recommendation: str
    urgency: int = 0  # 0-100, the model's second output

    def to_dict(self) -> dict:
        return {
            "probability": self.probability,
            "confidence": self.confidence,
            "estimatedTimeToFailure": self.estimated_time_to_failure,
            "component": self.component,
            "severity": self.severity,
            "recommendation": self.recommendation,
            "urgency": self.urgency,
        }
