import asyncio

import numpy as np
import pytest

from conftest import CountingStore, pin_output
from fleet_ml.engine import MODEL_KEYS, FleetMLEngine, snapshot_from_vehicle
from fleet_ml.model_store import MemoryStore
from fleet_ml.network import DenseNetwork
from fleet_ml.readings import (
    BatteryReading,
    BrakeReading,
    EngineReading,
    FuelReading,
    TireReading,
    VehicleSnapshot,
)
from fleet_ml.synthesizer import generate_engine_data
from fleet_ml.utils import round_half_up

RISKY_ENGINE = EngineReading(
    engine_temp=110, oil_pressure=22, mileage=280000,
    vehicle_age=12, avg_load=0.8, engine_hours=9000,
)
HEALTHY_ENGINE = EngineReading(
    engine_temp=80, oil_pressure=50, mileage=20000,
    vehicle_age=1, avg_load=0.2, engine_hours=500,
)
SNAPSHOT = VehicleSnapshot(
    engine_temp=92, oil_pressure=38, mileage=85000, vehicle_age=4,
    battery_voltage=12.4, tire_pressure=31.5, engine_hours=2125,
)


def test_initialize_trains_and_persists_all_models(make_engine, store):
    engine = make_engine()
    assert engine.state == "uninitialized"

    asyncio.run(engine.initialize())

    assert engine.state == "ready"
    assert sorted(store.keys()) == sorted(MODEL_KEYS.values())
    assert set(engine.last_training_errors) == set(MODEL_KEYS)
    assert store.writes == 5


def test_initialize_is_idempotent(make_engine, store):
    engine = make_engine()
    asyncio.run(engine.initialize())
    asyncio.run(engine.initialize())
    assert store.writes == 5


def test_concurrent_initialize_trains_once(make_engine, store):
    engine = make_engine()

    async def run():
        await asyncio.gather(engine.initialize(), engine.initialize(), engine.initialize())

    asyncio.run(run())
    assert engine.is_ready
    assert store.writes == 5


def test_second_engine_loads_instead_of_training(make_engine, store):
    first = make_engine(seed=1)
    asyncio.run(first.initialize())

    second = make_engine(seed=2)
    asyncio.run(second.initialize())

    assert second.is_ready
    assert second.last_training_errors == {}
    assert store.writes == 5
    assert (
        second.predict_engine_failure(RISKY_ENGINE)
        == first.predict_engine_failure(RISKY_ENGINE)
    )
    fuel = FuelReading(80, 0.4, 0.03, 20, 0.9, 0.8)
    assert second.predict_fuel_efficiency(fuel) == first.predict_fuel_efficiency(fuel)


@pytest.mark.parametrize("damage", ["delete", "corrupt", "wrong_shape"])
def test_one_bad_model_retrains_all_five(make_engine, damage):
    store = CountingStore()
    asyncio.run(make_engine(seed=1, target_store=store).initialize())
    before = {key: store.get(key) for key in MODEL_KEYS.values()}

    if damage == "delete":
        store.delete("fleet_ml_tire")
    elif damage == "corrupt":
        store.set("fleet_ml_tire", "{not json")
    else:
        other = DenseNetwork([6, 12, 8, 1], rng=np.random.default_rng(0))
        other.save(store, "fleet_ml_tire")
    store.writes = 0

    engine = make_engine(seed=2, target_store=store)
    asyncio.run(engine.initialize())

    assert engine.is_ready
    assert set(engine.last_training_errors) == set(MODEL_KEYS)
    assert store.writes == 5
    for key, payload in before.items():
        assert store.get(key) != payload


def test_save_failure_does_not_block_readiness(make_engine):
    class FullDiskStore(MemoryStore):
        def set(self, key, value):
            raise OSError("disk full")

    store = FullDiskStore()
    engine = make_engine(target_store=store)
    asyncio.run(engine.initialize())

    assert engine.is_ready
    assert store.keys() == []
    assert engine.predict_engine_failure(HEALTHY_ENGINE).component == "Engine"


def test_failed_initialize_can_be_retried(make_engine, store, monkeypatch):
    engine = make_engine()
    train_and_save = engine._train_and_save
    calls = []

    def interrupted_once():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("interrupted")
        train_and_save()

    monkeypatch.setattr(engine, "_train_and_save", interrupted_once)
    with pytest.raises(RuntimeError):
        asyncio.run(engine.initialize())
    assert engine.state == "uninitialized"

    asyncio.run(engine.initialize())
    assert engine.is_ready
    assert len(calls) == 2
    assert store.writes == 5


def test_retrain_overwrites_saved_models(make_engine, store):
    engine = make_engine()
    asyncio.run(engine.initialize())
    before = store.get("fleet_ml_engine")

    errors = engine.retrain()

    assert set(errors) == set(MODEL_KEYS)
    assert store.get("fleet_ml_engine") != before
    assert store.writes == 10


def test_status_reports_models(make_engine):
    engine = make_engine()
    asyncio.run(engine.initialize())
    status = engine.status()
    assert status["state"] == "ready"
    assert status["store"] == "CountingStore"
    assert status["models"]["fuel"]["layers"] == [6, 12, 8, 1]
    assert status["models"]["engine"]["key"] == "fleet_ml_engine"


def test_engine_settings_from_environment(monkeypatch):
    monkeypatch.setenv("FLEET_ML_EPOCHS", "7")
    monkeypatch.setenv("FLEET_ML_SAMPLES", "11")
    monkeypatch.setenv("FLEET_ML_SEED", "5")
    a = FleetMLEngine(store=MemoryStore())
    b = FleetMLEngine(store=MemoryStore())
    assert a.epochs == 7
    assert a.sample_count == 11
    assert a.status()["models"] == b.status()["models"]
    assert a.predict_engine_failure(RISKY_ENGINE) == b.predict_engine_failure(RISKY_ENGINE)


# ── Result mapping ──────────────────────────────────────────────────────


def test_engine_critical_path(make_engine):
    engine = make_engine()
    pin_output(engine._models["engine"], [0.9, 0.95])

    result = engine.predict_engine_failure(RISKY_ENGINE)

    assert result.severity == "critical"
    assert result.probability == 90
    assert result.urgency == 95
    assert result.component == "Engine"
    assert "immediate" in result.recommendation.lower()
    assert result.estimated_time_to_failure == 18
    assert result.confidence == 80


@pytest.mark.parametrize("reading, expected", [
    (RISKY_ENGINE, "High engine temperature detected. Check cooling system."),
    (
        EngineReading(90, 25, 100000, 5, 0.5, 3000),
        "Low oil pressure. Check oil levels and filter.",
    ),
    (HEALTHY_ENGINE, "Schedule engine maintenance within 2 weeks."),
])
def test_engine_sensor_override_in_high_bucket(make_engine, reading, expected):
    engine = make_engine()
    pin_output(engine._models["engine"], [0.6, 0.5])
    result = engine.predict_engine_failure(reading)
    assert result.severity == "high"
    assert result.recommendation == expected
    assert result.estimated_time_to_failure == 72
    assert result.confidence == 95


def test_engine_low_and_medium_recommendations(make_engine):
    engine = make_engine()
    pin_output(engine._models["engine"], [0.4, 0.5])
    medium = engine.predict_engine_failure(RISKY_ENGINE)
    assert medium.severity == "medium"
    assert medium.recommendation.startswith("Monitor engine performance")

    pin_output(engine._models["engine"], [0.1, 0.2])
    low = engine.predict_engine_failure(RISKY_ENGINE)
    assert low.severity == "low"
    assert low.recommendation == "Engine operating within normal parameters."


def test_time_to_failure_is_at_least_one_day(make_engine):
    engine = make_engine()
    pin_output(engine._models["tire"], [0.999, 0.9])
    result = engine.predict_tire_wear(TireReading(26, 79000, 0.9, 0.9, 0.5))
    assert result.estimated_time_to_failure == 1
    assert result.probability == 100


def test_brake_battery_tire_results(make_engine):
    engine = make_engine()
    pin_output(engine._models["brake"], [0.66, 0.5])
    pin_output(engine._models["battery"], [0.45, 0.5])
    pin_output(engine._models["tire"], [0.2, 0.5])

    brake = engine.predict_brake_wear(BrakeReading(0.8, 90000, 0.7, 0.9, 45000))
    battery = engine.predict_battery_health(BatteryReading(11.8, 35, 5, 800, 0.6))
    tire = engine.predict_tire_wear(TireReading(32, 10000, 0.3, 0.2, 0.95))

    assert (brake.component, brake.severity) == ("Brakes", "high")
    assert brake.recommendation == "Schedule brake inspection immediately"
    assert brake.estimated_time_to_failure == 31
    assert (battery.component, battery.severity) == ("Battery", "medium")
    assert battery.recommendation == "Monitor battery voltage regularly"
    assert battery.estimated_time_to_failure == 66
    assert (tire.component, tire.severity) == ("Tires", "low")
    assert tire.recommendation == "Tires in good condition"
    assert tire.estimated_time_to_failure == 48


def test_random_confidence_ranges(make_engine):
    engine = make_engine()
    reading = BatteryReading(12.6, 20, 2, 300, 0.3)
    battery = {engine.predict_battery_health(reading).confidence for _ in range(200)}
    brake = {
        engine.predict_brake_wear(BrakeReading(0.5, 20000, 0.5, 0.3, 10000)).confidence
        for _ in range(200)
    }
    assert min(battery) >= 75 and max(battery) <= 95
    assert min(brake) >= 70 and max(brake) <= 95
    assert len(brake) > 1


def test_fuel_efficiency_stays_in_range(make_engine):
    engine = make_engine()
    rng = np.random.default_rng(21)
    for _ in range(200):
        reading = FuelReading(
            avg_speed=rng.uniform(0, 250),
            load_factor=rng.uniform(-1, 2),
            terrain_grade=rng.uniform(-0.3, 0.5),
            ambient_temp=rng.uniform(-40, 60),
            tire_condition=rng.uniform(0, 1),
            engine_efficiency=rng.uniform(0, 1),
        )
        assert 5.0 <= engine.predict_fuel_efficiency(reading) <= 15.0

    pin_output(engine._models["fuel"], [0.5])
    assert engine.predict_fuel_efficiency(FuelReading(70, 0.2, 0.0, 20, 1, 1)) == pytest.approx(10.0)


def test_vehicle_predictions_in_fixed_order(make_engine):
    engine = make_engine()
    results = engine.get_vehicle_predictions(SNAPSHOT)
    assert [r.component for r in results] == ["Engine", "Brakes", "Battery", "Tires"]
    for r in results:
        assert 0 <= r.probability <= 100
        assert r.severity in {"low", "medium", "high", "critical"}


def test_vehicle_predictions_use_filler_values(make_engine):
    engine = make_engine()
    engine_result = engine.predict_engine_failure(EngineReading(92, 38, 85000, 4, 0.6, 2125))
    brake_result_inputs = engine._models["brake"].forward([0.5, 25000 / 100000, 0.6, 0.3, 35000 / 50000])

    results = engine.get_vehicle_predictions(SNAPSHOT)

    assert results[0] == engine_result
    assert results[1].probability == round_half_up(brake_result_inputs[0] * 100)


def test_trained_engine_ranks_risky_above_healthy():
    rng = np.random.default_rng(2024)
    engine = FleetMLEngine(store=MemoryStore(), rng=rng, epochs=1, sample_count=1)
    engine._models["engine"].train(generate_engine_data(rng, 200), epochs=150)

    risky = engine.predict_engine_failure(RISKY_ENGINE)
    healthy = engine.predict_engine_failure(HEALTHY_ENGINE)

    assert risky.probability > healthy.probability + 20
    assert risky.severity != "low"
    assert healthy.severity == "low"


# ── Fleet records ────────────────────────────────────────────────────────


def test_snapshot_from_vehicle_averages_tire_pressure():
    snapshot = snapshot_from_vehicle({
        "id": "v1",
        "mileage": 80000,
        "sensors": {
            "engineTemp": 95,
            "oilPressure": 33,
            "batteryVoltage": 12.1,
            "tirePressure": {"fl": 30, "fr": 32, "rl": 31, "rr": 35},
        },
    })
    assert snapshot == VehicleSnapshot(
        engine_temp=95, oil_pressure=33, mileage=80000, vehicle_age=3,
        battery_voltage=12.1, tire_pressure=32.0, engine_hours=2000.0,
    )


def test_snapshot_from_vehicle_defaults():
    snapshot = snapshot_from_vehicle({"id": "v2", "sensors": {"tirePressure": 30}})
    assert snapshot.engine_temp == 80
    assert snapshot.oil_pressure == 40
    assert snapshot.battery_voltage == 12.5
    assert snapshot.mileage == 0
    assert snapshot.engine_hours == 0
    assert snapshot.tire_pressure == 30.0


@pytest.mark.parametrize("vehicle", [
    {"id": "a"},
    {"id": "b", "sensors": None},
    {"id": "c", "sensors": {"engineTemp": 90}},
])
def test_snapshot_requires_tire_pressure(vehicle):
    assert snapshot_from_vehicle(vehicle) is None


def test_predict_fleet_skips_and_isolates_failures(make_engine):
    engine = make_engine()
    vehicles = [
        {"id": "ok", "mileage": 50000, "sensors": {"tirePressure": 32}},
        {"id": "no-sensors", "mileage": 1000},
        {"id": "broken", "sensors": {"tirePressure": {"fl": 30}}},
        {"id": "garbled", "sensors": "garbled"},
        "not-a-record",
        {"id": 7, "mileage": 120000, "sensors": {"engineTemp": 105, "tirePressure": 28}},
    ]
    predictions = engine.predict_fleet(vehicles)
    assert sorted(predictions) == ["7", "ok"]
    assert len(predictions["ok"]) == 4


def test_predict_fleet_skips_missing_and_duplicate_ids(make_engine, capsys):
    engine = make_engine()
    vehicles = [
        {"mileage": 10000, "sensors": {"tirePressure": 32}},
        {"mileage": 20000, "sensors": {"tirePressure": 31}},
        {"id": "v1", "mileage": 30000, "sensors": {"engineTemp": 85, "tirePressure": 33}},
        {"id": "v1", "mileage": 250000, "sensors": {"engineTemp": 115, "tirePressure": 26}},
        {"id": "v2", "mileage": 40000, "sensors": {"tirePressure": 30}},
    ]
    predictions = engine.predict_fleet(vehicles)
    assert sorted(predictions) == ["v1", "v2"]
    # First record for an id wins
    expected = engine.get_vehicle_predictions(snapshot_from_vehicle(vehicles[2]))
    assert predictions["v1"][0].probability == expected[0].probability
    out = capsys.readouterr().out
    assert out.count("no id") == 2
    assert "duplicate vehicle id v1" in out


def test_prediction_result_to_dict(make_engine):
    engine = make_engine()
    d = engine.predict_engine_failure(HEALTHY_ENGINE).to_dict()
    assert set(d) == {
        "probability", "confidence", "estimatedTimeToFailure",
        "component", "severity", "recommendation", "urgency",
    }
