"""Synthetic training data for the fleet failure models.

Each generator samples plausible sensor readings, labels them with a fixed
risk formula and min-max normalizes the inputs with the same bounds the
engine uses at inference time. Samples are built in order and never
shuffled, since training applies updates per sample.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from fleet_ml.utils import normalize

DEFAULT_SAMPLE_COUNT = 200

# Label ceiling, keeps targets away from the sigmoid's flat top.
MAX_LABEL = 0.95


@dataclass(frozen=True)
class TrainingSample:
    inputs: tuple[float, ...]
    outputs: tuple[float, ...]


def _rng(rng: np.random.Generator | None) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def generate_engine_data(
    rng: np.random.Generator | None = None, count: int = DEFAULT_SAMPLE_COUNT
) -> list[TrainingSample]:
    """Engine failure samples: [temp, oil, mileage, age, load, hours] -> [p, urgency]."""
    rng = _rng(rng)
    data = []
    for _ in range(count):
        engine_temp = 70 + rng.random() * 50  # °C
        oil_pressure = 20 + rng.random() * 40  # PSI
        mileage = rng.random() * 300000  # km
        age = rng.random() * 15  # years
        avg_load = rng.random()
        engine_hours = rng.random() * 10000

        temp_risk = (engine_temp - 100) / 20 if engine_temp > 100 else 0.0
        oil_risk = (30 - oil_pressure) / 30 if oil_pressure < 30 else 0.0
        mileage_risk = mileage / 400000
        age_risk = age / 20
        load_risk = avg_load * 0.3
        hours_risk = engine_hours / 15000

        probability = min(
            MAX_LABEL,
            temp_risk * 0.25
            + oil_risk * 0.2
            + mileage_risk * 0.2
            + age_risk * 0.15
            + load_risk * 0.1
            + hours_risk * 0.1,
        )
        if probability > 0.6:
            urgency = 1.0
        elif probability > 0.3:
            urgency = 0.5
        else:
            urgency = 0.2

        data.append(TrainingSample(
            inputs=(
                normalize(engine_temp, 70, 120),
                normalize(oil_pressure, 20, 60),
                normalize(mileage, 0, 300000),
                normalize(age, 0, 15),
                avg_load,
                normalize(engine_hours, 0, 10000),
            ),
            outputs=(probability, urgency),
        ))
    return data


def generate_brake_data(
    rng: np.random.Generator | None = None, count: int = DEFAULT_SAMPLE_COUNT
) -> list[TrainingSample]:
    """Brake wear samples: [usage, mileage, load, terrain, last service] -> [p, urgency]."""
    rng = _rng(rng)
    data = []
    for _ in range(count):
        brake_usage = rng.random()
        mileage = rng.random() * 100000  # km since last service
        avg_load = rng.random()
        terrain_type = rng.random()  # 0 flat, 1 mountainous
        last_service = rng.random() * 50000  # km since last brake service

        probability = min(
            MAX_LABEL,
            brake_usage * 0.25
            + (mileage / 120000) * 0.25
            + avg_load * 0.2
            + terrain_type * 0.15
            + (last_service / 60000) * 0.15,
        )

        data.append(TrainingSample(
            inputs=(
                brake_usage,
                normalize(mileage, 0, 100000),
                avg_load,
                terrain_type,
                normalize(last_service, 0, 50000),
            ),
            outputs=(probability, 1.0 if probability > 0.7 else 0.3),
        ))
    return data


def generate_battery_data(
    rng: np.random.Generator | None = None, count: int = DEFAULT_SAMPLE_COUNT
) -> list[TrainingSample]:
    """Battery failure samples: [voltage, temp, age, cycles, draw] -> [p, urgency]."""
    rng = _rng(rng)
    data = []
    for _ in range(count):
        voltage = 11 + rng.random() * 3  # V
        temperature = -10 + rng.random() * 60  # °C
        age = rng.random() * 7  # years
        charge_cycles = rng.random() * 1000
        avg_draw = rng.random()

        voltage_risk = (12.2 - voltage) / 1.2 if voltage < 12.2 else 0.0
        temp_risk = abs(temperature - 20) / 40
        age_risk = age / 8
        cycle_risk = charge_cycles / 1200

        probability = min(
            MAX_LABEL,
            voltage_risk * 0.3
            + temp_risk * 0.15
            + age_risk * 0.3
            + cycle_risk * 0.15
            + avg_draw * 0.1,
        )

        data.append(TrainingSample(
            inputs=(
                normalize(voltage, 11, 14),
                normalize(temperature, -10, 50),
                normalize(age, 0, 7),
                normalize(charge_cycles, 0, 1000),
                avg_draw,
            ),
            outputs=(probability, 1.0 if probability > 0.5 else 0.2),
        ))
    return data


def generate_tire_data(
    rng: np.random.Generator | None = None, count: int = DEFAULT_SAMPLE_COUNT
) -> list[TrainingSample]:
    """Tire wear samples: [pressure, mileage, load, roughness, alignment] -> [p, urgency]."""
    rng = _rng(rng)
    data = []
    for _ in range(count):
        tire_pressure = 25 + rng.random() * 15  # PSI
        mileage = rng.random() * 80000  # km on tires
        load_weight = rng.random()
        terrain_roughness = rng.random()
        alignment_score = 0.5 + rng.random() * 0.5

        pressure_risk = abs(tire_pressure - 32) / 10
        mileage_risk = mileage / 100000

        probability = min(
            MAX_LABEL,
            pressure_risk * 0.2
            + mileage_risk * 0.35
            + load_weight * 0.15
            + terrain_roughness * 0.15
            + (1 - alignment_score) * 0.15,
        )

        data.append(TrainingSample(
            inputs=(
                normalize(tire_pressure, 25, 40),
                normalize(mileage, 0, 80000),
                load_weight,
                terrain_roughness,
                alignment_score,
            ),
            outputs=(probability, 1.0 if probability > 0.6 else 0.3),
        ))
    return data


def generate_fuel_data(
    rng: np.random.Generator | None = None, count: int = DEFAULT_SAMPLE_COUNT
) -> list[TrainingSample]:
    """Fuel efficiency samples: [speed, load, grade, air temp, tires, engine] -> [eff]."""
    rng = _rng(rng)
    data = []
    for _ in range(count):
        speed = 30 + rng.random() * 100  # km/h
        load = rng.random()
        terrain_grade = rng.random() * 0.15  # 0-15% grade
        air_temp = -10 + rng.random() * 50
        tire_condition = 0.5 + rng.random() * 0.5
        engine_efficiency = 0.6 + rng.random() * 0.4

        # Best economy around 70 km/h
        speed_factor = 1 - abs(speed - 70) / 100
        efficiency = (
            speed_factor * 0.25
            + (1 - load) * 0.2
            + (1 - terrain_grade / 0.15) * 0.2
            + tire_condition * 0.15
            + engine_efficiency * 0.2
        ) * 15  # km/L

        data.append(TrainingSample(
            inputs=(
                normalize(speed, 30, 130),
                load,
                terrain_grade / 0.15,
                normalize(air_temp, -10, 40),
                tire_condition,
                engine_efficiency,
            ),
            outputs=(normalize(efficiency, 5, 15),),
        ))
    return data


GENERATORS = {
    "engine": generate_engine_data,
    "brake": generate_brake_data,
    "battery": generate_battery_data,
    "tire": generate_tire_data,
    "fuel": generate_fuel_data,
}
