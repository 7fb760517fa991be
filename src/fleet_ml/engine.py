"""Fleet prediction engine: five failure models behind one load-or-train lifecycle."""

from __future__ import annotations

import asyncio
import os
import time

import numpy as np

from fleet_ml.model_store import get_store
from fleet_ml.network import DenseNetwork, KeyValueStore
from fleet_ml.readings import (
    BatteryReading,
    BrakeReading,
    EngineReading,
    FuelReading,
    PredictionResult,
    TireReading,
    VehicleSnapshot,
)
from fleet_ml.synthesizer import DEFAULT_SAMPLE_COUNT, GENERATORS
from fleet_ml.utils import normalize, round_half_up, severity_for

MODEL_KEYS = {
    "engine": "fleet_ml_engine",
    "brake": "fleet_ml_brake",
    "battery": "fleet_ml_battery",
    "tire": "fleet_ml_tire",
    "fuel": "fleet_ml_fuel",
}

# engine: [temp, oil, mileage, age, load, hours]
# brake: [usage, mileage, load, terrain, last service]
# battery: [voltage, temp, age, cycles, draw]
# tire: [pressure, mileage, load, roughness, alignment]
# fuel: [speed, load, grade, air temp, tires, engine]
ARCHITECTURES = {
    "engine": [6, 12, 8, 2],
    "brake": [5, 10, 6, 2],
    "battery": [5, 10, 6, 2],
    "tire": [5, 10, 6, 2],
    "fuel": [6, 12, 8, 1],
}

LEARNING_RATE = 0.05
DEFAULT_EPOCHS = 500

# Days until failure at probability 0
HORIZON_DAYS = {"engine": 180, "brake": 90, "battery": 120, "tire": 60}


class FleetMLEngine:
    """Owns the five domain networks and turns readings into predictions."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        rng: np.random.Generator | None = None,
        epochs: int | None = None,
        sample_count: int | None = None,
    ) -> None:
        self._store = store if store is not None else get_store()
        if rng is None:
            seed = os.getenv("FLEET_ML_SEED")
            rng = np.random.default_rng(int(seed) if seed else None)
        self._rng = rng
        self.epochs = epochs if epochs is not None else int(
            os.getenv("FLEET_ML_EPOCHS", DEFAULT_EPOCHS)
        )
        self.sample_count = sample_count if sample_count is not None else int(
            os.getenv("FLEET_ML_SAMPLES", DEFAULT_SAMPLE_COUNT)
        )
        self._models = self._build_models()
        self._state = "uninitialized"
        self._init_task: asyncio.Future | None = None
        self.last_training_errors: dict[str, float] = {}

    def _build_models(self) -> dict[str, DenseNetwork]:
        return {
            name: DenseNetwork(layers, LEARNING_RATE, rng=self._rng)
            for name, layers in ARCHITECTURES.items()
        }

    @property
    def state(self) -> str:
        """One of uninitialized, loading, training, ready."""
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == "ready"

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the persisted models, or train and persist all of them.

        Safe to call repeatedly and concurrently: callers share a single
        in-flight initialization, and cancelling a caller does not stop it.
        """
        if self.is_ready:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._run_initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and (task.cancelled() or task.exception() is not None):
                self._init_task = None

    async def _run_initialize(self) -> None:
        try:
            self._state = "loading"
            if self._load_models():
                print("[fleet-ml] Loaded persisted models", flush=True)
                self.last_training_errors = {}
            else:
                print("[fleet-ml] Persisted models missing or stale, training", flush=True)
                self._train_and_save()
            self._state = "ready"
        except BaseException:
            self._state = "uninitialized"
            raise

    def retrain(self) -> dict[str, float]:
        """Discard the current weights, retrain every model and persist it."""
        self._train_and_save()
        self._state = "ready"
        return dict(self.last_training_errors)

    def _load_models(self) -> bool:
        # Every model is attempted so a partial hit is visible in the log.
        loaded = {
            name: model.load(self._store, MODEL_KEYS[name])
            for name, model in self._models.items()
        }
        missing = [name for name, ok in loaded.items() if not ok]
        if missing:
            print(f"[fleet-ml] Could not load: {', '.join(missing)}", flush=True)
        return not missing

    def _train_and_save(self) -> None:
        self._state = "training"
        self._models = self._build_models()
        self.last_training_errors = {}
        for name, generate in GENERATORS.items():
            data = generate(self._rng, self.sample_count)
            t0 = time.monotonic()
            error = self._models[name].train(data, self.epochs)
            ms = int((time.monotonic() - t0) * 1000)
            self.last_training_errors[name] = error
            print(
                f"[fleet-ml] Trained {name} model: {self.epochs} epochs, "
                f"error {error:.5f}, {ms} ms",
                flush=True,
            )
        self._save_models()

    def _save_models(self) -> None:
        for name, model in self._models.items():
            try:
                model.save(self._store, MODEL_KEYS[name])
            except Exception as e:
                # Never let persistence break predictions; next start retrains.
                print(f"[fleet-ml] Could not save {name} model: {e}", flush=True)

    def status(self) -> dict:
        return {
            "state": self._state,
            "store": type(self._store).__name__,
            "epochs": self.epochs,
            "sampleCount": self.sample_count,
            "models": {
                name: {"key": MODEL_KEYS[name], "layers": list(model.layers)}
                for name, model in self._models.items()
            },
            "lastTrainingErrors": dict(self.last_training_errors),
        }

    # ── Predictions ──────────────────────────────────────────────────────

    def _result(
        self,
        domain: str,
        component: str,
        output: list[float],
        confidence: int,
        recommendation: str,
    ) -> PredictionResult:
        probability = output[0]
        return PredictionResult(
            probability=round_half_up(probability * 100),
            confidence=confidence,
            estimated_time_to_failure=max(
                1, round_half_up((1 - probability) * HORIZON_DAYS[domain])
            ),
            component=component,
            severity=severity_for(probability),
            recommendation=recommendation,
            urgency=round_half_up(output[1] * 100) if len(output) > 1 else 0,
        )

    def _random_confidence(self, lo: float, spread: float) -> int:
        return round_half_up((lo + self._rng.random() * spread) * 100)

    def predict_engine_failure(self, reading: EngineReading) -> PredictionResult:
        output = self._models["engine"].forward([
            normalize(reading.engine_temp, 70, 120),
            normalize(reading.oil_pressure, 20, 60),
            normalize(reading.mileage, 0, 300000),
            normalize(reading.vehicle_age, 0, 15),
            reading.avg_load,
            normalize(reading.engine_hours, 0, 10000),
        ])
        probability = output[0]
        return self._result(
            "engine",
            "Engine",
            output,
            confidence=round_half_up((1 - abs(probability - 0.5) * 0.5) * 100),
            recommendation=engine_recommendation(probability, reading),
        )

    def predict_brake_wear(self, reading: BrakeReading) -> PredictionResult:
        output = self._models["brake"].forward([
            reading.brake_usage_intensity,
            normalize(reading.mileage_since_service, 0, 100000),
            reading.avg_load,
            reading.terrain_type,
            normalize(reading.last_brake_service, 0, 50000),
        ])
        p = output[0]
        if p > 0.6:
            recommendation = "Schedule brake inspection immediately"
        elif p > 0.3:
            recommendation = "Plan brake service within 30 days"
        else:
            recommendation = "Brakes in good condition"
        return self._result(
            "brake", "Brakes", output, self._random_confidence(0.7, 0.25), recommendation
        )

    def predict_battery_health(self, reading: BatteryReading) -> PredictionResult:
        output = self._models["battery"].forward([
            normalize(reading.voltage, 11, 14),
            normalize(reading.temperature, -10, 50),
            normalize(reading.battery_age, 0, 7),
            normalize(reading.charge_cycles, 0, 1000),
            reading.avg_draw,
        ])
        p = output[0]
        if p > 0.6:
            recommendation = "Battery replacement recommended soon"
        elif p > 0.3:
            recommendation = "Monitor battery voltage regularly"
        else:
            recommendation = "Battery health is good"
        return self._result(
            "battery", "Battery", output, self._random_confidence(0.75, 0.2), recommendation
        )

    def predict_tire_wear(self, reading: TireReading) -> PredictionResult:
        output = self._models["tire"].forward([
            normalize(reading.tire_pressure, 25, 40),
            normalize(reading.mileage_on_tires, 0, 80000),
            reading.avg_load_weight,
            reading.terrain_roughness,
            reading.alignment_score,
        ])
        p = output[0]
        if p > 0.6:
            recommendation = "Tire replacement needed soon"
        elif p > 0.3:
            recommendation = "Check tire tread depth and pressure"
        else:
            recommendation = "Tires in good condition"
        return self._result(
            "tire", "Tires", output, self._random_confidence(0.7, 0.25), recommendation
        )

    def predict_fuel_efficiency(self, reading: FuelReading) -> float:
        """Estimated fuel efficiency in km/L, always within [5, 15]."""
        output = self._models["fuel"].forward([
            normalize(reading.avg_speed, 30, 130),
            reading.load_factor,
            reading.terrain_grade / 0.15,
            normalize(reading.ambient_temp, -10, 40),
            reading.tire_condition,
            reading.engine_efficiency,
        ])
        return 5 + output[0] * 10

    def get_vehicle_predictions(self, vehicle: VehicleSnapshot) -> list[PredictionResult]:
        """Engine, brake, battery and tire predictions for one vehicle.

        Readings the snapshot doesn't carry are filled with typical fleet values.
        """
        return [
            self.predict_engine_failure(EngineReading(
                engine_temp=vehicle.engine_temp,
                oil_pressure=vehicle.oil_pressure,
                mileage=vehicle.mileage,
                vehicle_age=vehicle.vehicle_age,
                avg_load=0.6,
                engine_hours=vehicle.engine_hours,
            )),
            self.predict_brake_wear(BrakeReading(
                brake_usage_intensity=0.5,
                mileage_since_service=vehicle.mileage % 30000,
                avg_load=0.6,
                terrain_type=0.3,
                last_brake_service=vehicle.mileage % 50000,
            )),
            self.predict_battery_health(BatteryReading(
                voltage=vehicle.battery_voltage,
                temperature=25,
                battery_age=vehicle.vehicle_age * 0.5,
                charge_cycles=vehicle.mileage / 500,
                avg_draw=0.4,
            )),
            self.predict_tire_wear(TireReading(
                tire_pressure=vehicle.tire_pressure,
                mileage_on_tires=vehicle.mileage % 60000,
                avg_load_weight=0.5,
                terrain_roughness=0.3,
                alignment_score=0.85,
            )),
        ]

    def predict_fleet(self, vehicles: list[dict]) -> dict[str, list[PredictionResult]]:
        """Predictions keyed by vehicle id.

        Vehicles without an id or sensor data are skipped, as are repeats of
        an id already predicted. A failure on one vehicle is logged and the
        rest are still predicted.
        """
        predictions: dict[str, list[PredictionResult]] = {}
        seen: set[str] = set()
        for index, vehicle in enumerate(vehicles):
            label = f"#{index}"
            try:
                raw_id = vehicle.get("id")
                if raw_id is None:
                    print(f"[fleet-ml] Skipping vehicle {label}: no id", flush=True)
                    continue
                vehicle_id = label = str(raw_id)
                if vehicle_id in seen:
                    print(f"[fleet-ml] Skipping duplicate vehicle id {vehicle_id}", flush=True)
                    continue
                seen.add(vehicle_id)
                snapshot = snapshot_from_vehicle(vehicle)
                if snapshot is None:
                    continue
                predictions[vehicle_id] = self.get_vehicle_predictions(snapshot)
            except Exception as e:
                print(f"[fleet-ml] Prediction failed for vehicle {label}: {e}", flush=True)
        return predictions


def engine_recommendation(probability: float, reading: EngineReading) -> str:
    if probability > 0.7:
        return "Critical: Schedule immediate engine inspection. Check oil levels and cooling system."
    if probability > 0.5:
        if reading.engine_temp > 100:
            return "High engine temperature detected. Check cooling system."
        if reading.oil_pressure < 30:
            return "Low oil pressure. Check oil levels and filter."
        return "Schedule engine maintenance within 2 weeks."
    if probability > 0.3:
        return "Monitor engine performance. Next service due in 30 days."
    return "Engine operating within normal parameters."


DEFAULT_VEHICLE_AGE = 3


def snapshot_from_vehicle(vehicle: dict) -> VehicleSnapshot | None:
    """Build a snapshot from a fleet vehicle record.

    Returns None when the record has no sensor dict or no tire pressure. Tire
    pressure may be a single number or per-wheel ``fl/fr/rl/rr`` values,
    which are averaged.
    """
    sensors = vehicle.get("sensors")
    if not isinstance(sensors, dict) or not sensors.get("tirePressure"):
        return None

    tp = sensors["tirePressure"]
    if isinstance(tp, dict):
        tire_pressure = (tp["fl"] + tp["fr"] + tp["rl"] + tp["rr"]) / 4
    else:
        tire_pressure = float(tp)

    mileage = vehicle.get("mileage") or 0
    engine_temp = sensors.get("engineTemp")
    oil_pressure = sensors.get("oilPressure")
    battery_voltage = sensors.get("batteryVoltage")
    vehicle_age = vehicle.get("vehicleAge")
    engine_hours = vehicle.get("engineHours")
    return VehicleSnapshot(
        engine_temp=80 if engine_temp is None else engine_temp,
        oil_pressure=40 if oil_pressure is None else oil_pressure,
        mileage=mileage,
        vehicle_age=DEFAULT_VEHICLE_AGE if vehicle_age is None else vehicle_age,
        battery_voltage=12.5 if battery_voltage is None else battery_voltage,
        tire_pressure=tire_pressure,
        engine_hours=mileage / 40 if engine_hours is None else engine_hours,
    )
