"""Fleet ML MCP Server: predictive maintenance for fleet vehicles via Model Context Protocol."""

from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

from mcp.server.fastmcp import FastMCP

from fleet_ml.engine import FleetMLEngine
from fleet_ml.readings import (
    BatteryReading,
    BrakeReading,
    EngineReading,
    FuelReading,
    TireReading,
    VehicleSnapshot,
)

# Initialize FastMCP server
mcp = FastMCP(
    "Fleet ML Predictor",
    instructions=(
        "You are a fleet maintenance assistant backed by on-device failure models. "
        "You can estimate failure probability, severity and days to failure for a "
        "vehicle's engine, brakes, battery and tires, and estimate fuel efficiency "
        "from driving conditions. Probabilities are percentages (0-100). Use "
        "get_vehicle_predictions when you have a vehicle's live sensor readings, and "
        "predict_fleet to rank a whole fleet."
    ),
)

# Shared engine (initialized lazily on first use)
_engine: FleetMLEngine | None = None


def _engine_instance() -> FleetMLEngine:
    global _engine
    if _engine is None:
        _engine = FleetMLEngine()
    return _engine


async def _get_engine() -> FleetMLEngine:
    engine = _engine_instance()
    await engine.initialize()
    return engine


# ---------------------------------------------------------------------------
# Tool 1: Model Status
# ---------------------------------------------------------------------------
@mcp.tool()
async def model_status() -> dict:
    """Report whether the prediction models are loaded, and their shapes.

    Initializes the models on first call (loading them from the model store,
    or training them if none are saved yet).
    """
    try:
        engine = await _get_engine()
        return engine.status()
    except Exception as e:
        return {"ready": False, "error": str(e)}


# ---------------------------------------------------------------------------
# Tool 2: Engine Failure
# ---------------------------------------------------------------------------
@mcp.tool()
async def predict_engine_failure(
    engine_temp: float,
    oil_pressure: float,
    mileage: float,
    vehicle_age: float,
    engine_hours: float,
    avg_load: float = 0.6,
) -> dict:
    """Predict engine failure risk from live engine readings.

    Args:
        engine_temp: Coolant temperature in °C (normal range 70-120)
        oil_pressure: Oil pressure in PSI (normal range 20-60)
        mileage: Odometer in km
        vehicle_age: Vehicle age in years
        engine_hours: Total engine hours
        avg_load: Average load factor 0-1 (default 0.6)
    """
    try:
        engine = await _get_engine()
        return engine.predict_engine_failure(EngineReading(
            engine_temp=engine_temp,
            oil_pressure=oil_pressure,
            mileage=mileage,
            vehicle_age=vehicle_age,
            avg_load=avg_load,
            engine_hours=engine_hours,
        )).to_dict()
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 3: Brake Wear
# ---------------------------------------------------------------------------
@mcp.tool()
async def predict_brake_wear(
    brake_usage_intensity: float,
    mileage_since_service: float,
    avg_load: float,
    terrain_type: float,
    last_brake_service: float,
) -> dict:
    """Predict brake wear.

    Args:
        brake_usage_intensity: Braking intensity 0-1
        mileage_since_service: km since the last general service
        avg_load: Average load factor 0-1
        terrain_type: 0 for flat, 1 for mountainous
        last_brake_service: km since the last brake service
    """
    try:
        engine = await _get_engine()
        return engine.predict_brake_wear(BrakeReading(
            brake_usage_intensity=brake_usage_intensity,
            mileage_since_service=mileage_since_service,
            avg_load=avg_load,
            terrain_type=terrain_type,
            last_brake_service=last_brake_service,
        )).to_dict()
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 4: Battery Health
# ---------------------------------------------------------------------------
@mcp.tool()
async def predict_battery_health(
    voltage: float,
    temperature: float,
    battery_age: float,
    charge_cycles: float,
    avg_draw: float,
) -> dict:
    """Predict battery failure risk.

    Args:
        voltage: Resting voltage in V (11-14)
        temperature: Battery temperature in °C
        battery_age: Battery age in years
        charge_cycles: Number of charge cycles
        avg_draw: Average electrical draw 0-1
    """
    try:
        engine = await _get_engine()
        return engine.predict_battery_health(BatteryReading(
            voltage=voltage,
            temperature=temperature,
            battery_age=battery_age,
            charge_cycles=charge_cycles,
            avg_draw=avg_draw,
        )).to_dict()
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 5: Tire Wear
# ---------------------------------------------------------------------------
@mcp.tool()
async def predict_tire_wear(
    tire_pressure: float,
    mileage_on_tires: float,
    avg_load_weight: float,
    terrain_roughness: float,
    alignment_score: float,
) -> dict:
    """Predict tire wear.

    Args:
        tire_pressure: Average tire pressure in PSI
        mileage_on_tires: km driven on the current tires
        avg_load_weight: Average load 0-1
        terrain_roughness: Road roughness 0-1
        alignment_score: Wheel alignment score 0.5-1
    """
    try:
        engine = await _get_engine()
        return engine.predict_tire_wear(TireReading(
            tire_pressure=tire_pressure,
            mileage_on_tires=mileage_on_tires,
            avg_load_weight=avg_load_weight,
            terrain_roughness=terrain_roughness,
            alignment_score=alignment_score,
        )).to_dict()
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 6: Fuel Efficiency
# ---------------------------------------------------------------------------
@mcp.tool()
async def predict_fuel_efficiency(
    avg_speed: float,
    load_factor: float,
    terrain_grade: float,
    ambient_temp: float,
    tire_condition: float,
    engine_efficiency: float,
) -> dict:
    """Estimate fuel efficiency in km/L for the given driving conditions.

    Args:
        avg_speed: Average speed in km/h
        load_factor: Load factor 0-1
        terrain_grade: Road grade as a fraction (0-0.15)
        ambient_temp: Air temperature in °C
        tire_condition: Tire condition 0.5-1
        engine_efficiency: Engine efficiency 0.6-1
    """
    try:
        engine = await _get_engine()
        kml = engine.predict_fuel_efficiency(FuelReading(
            avg_speed=avg_speed,
            load_factor=load_factor,
            terrain_grade=terrain_grade,
            ambient_temp=ambient_temp,
            tire_condition=tire_condition,
            engine_efficiency=engine_efficiency,
        ))
        return {"fuelEfficiencyKmL": round(kml, 2)}
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 7: Vehicle Predictions
# ---------------------------------------------------------------------------
@mcp.tool()
async def get_vehicle_predictions(
    engine_temp: float,
    oil_pressure: float,
    mileage: float,
    vehicle_age: float,
    battery_voltage: float,
    tire_pressure: float,
    engine_hours: float | None = None,
) -> dict:
    """Engine, brake, battery and tire predictions for one vehicle.

    Args:
        engine_temp: Coolant temperature in °C
        oil_pressure: Oil pressure in PSI
        mileage: Odometer in km
        vehicle_age: Vehicle age in years
        battery_voltage: Battery voltage in V
        tire_pressure: Average tire pressure in PSI
        engine_hours: Engine hours (default mileage / 40)
    """
    try:
        engine = await _get_engine()
        results = engine.get_vehicle_predictions(VehicleSnapshot(
            engine_temp=engine_temp,
            oil_pressure=oil_pressure,
            mileage=mileage,
            vehicle_age=vehicle_age,
            battery_voltage=battery_voltage,
            tire_pressure=tire_pressure,
            engine_hours=mileage / 40 if engine_hours is None else engine_hours,
        ))
        return {"predictions": [r.to_dict() for r in results]}
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 8: Fleet Predictions
# ---------------------------------------------------------------------------
@mcp.tool()
async def predict_fleet(vehicles: list[dict], limit: int = 10) -> dict:
    """Rank vehicles by their highest predicted failure risk.

    Each vehicle is a record like
    {"id": "v1", "mileage": 120000, "sensors": {"engineTemp": 95,
    "oilPressure": 35, "batteryVoltage": 12.4,
    "tirePressure": {"fl": 32, "fr": 31, "rl": 33, "rr": 32}}}.
    Vehicles without an id or sensor data, and repeats of an id, are skipped.

    Args:
        vehicles: Vehicle records with sensor readings
        limit: Max vehicles to return, riskiest first (default 10)
    """
    try:
        engine = await _get_engine()
        predictions = engine.predict_fleet(vehicles)
        ranked = sorted(
            predictions.items(),
            key=lambda item: max(r.probability for r in item[1]),
            reverse=True,
        )
        return {
            "count": len(predictions),
            "skipped": len(vehicles) - len(predictions),
            "vehicles": [
                {
                    "vehicleId": vehicle_id,
                    "maxProbability": max(r.probability for r in results),
                    "predictions": [r.to_dict() for r in results],
                }
                for vehicle_id, results in ranked[:limit]
            ],
        }
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Tool 9: Retrain Models
# ---------------------------------------------------------------------------
@mcp.tool()
async def retrain_models() -> dict:
    """Retrain all five models from fresh synthetic data and save them.

    Takes a while: every model runs its full epoch budget.
    """
    try:
        # retrain() leaves the engine ready, so a cold start trains only once
        engine = _engine_instance()
        errors = engine.retrain()
        return {"status": "retrained", "trainingErrors": errors}
    except Exception as e:
        return {"error": str(e)}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main():
    """Run the Fleet ML MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
