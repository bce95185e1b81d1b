from __future__ import annotations

"""
File: fleet_ops/sim/metrics.py
Purpose: Compute dashboard KPIs from vehicle and delivery state.
Key responsibilities:
- Active/idle/offline vehicle counts, trips in progress, delivery status totals.
"""

from typing import Iterable

from fleet_ops.sim.entities import Delivery, Vehicle


def compute_kpis(vehicles: Iterable[Vehicle], deliveries: Iterable[Delivery]) -> dict[str, int | float]:
    """Compute the KPI card values shown by the dashboard."""
    vehicles = list(vehicles)
    deliveries = list(deliveries)
    batteries = [v.battery for v in vehicles if v.battery is not None]
    avg_battery = sum(batteries) / len(batteries) if batteries else 0.0

    return {
        "active_vehicles": sum(1 for v in vehicles if v.state == "en_route"),
        "trips_in_progress": sum(1 for d in deliveries if d.status == "en_route"),
        "idle_vehicles": sum(1 for v in vehicles if v.state == "idle"),
        "offline_vehicles": sum(1 for v in vehicles if v.state == "offline"),
        "total_vehicles": len(vehicles),
        "pending_deliveries": sum(1 for d in deliveries if d.status in {"pending", "picking"}),
        "delivered": sum(1 for d in deliveries if d.status == "delivered"),
        "cancelled": sum(1 for d in deliveries if d.status == "cancelled"),
        "avg_battery": round(avg_battery, 3),
    }
