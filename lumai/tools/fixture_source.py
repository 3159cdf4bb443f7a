"""
YAML-backed WellnessDataSource for local runs, demos and tests.

File layout:

    users:
      <user_id>:
        metrics: {weight: {...}, height: {...}, bmi: {...}, wellness_score: {...}, overview: {...}}
        goals: {weight: {...}, activity: {...}}
        meal_plans: {"2026-10-17": {...}, default: {...}}
        nutrition: {today: {...}, 7d: {...}}
        visualizations: {weight_trend: {...}, macro_breakdown: {...}}
    recipes:
      <recipe_id>: {...}
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path

import yaml

from lumai.tools.wellness import WellnessDataSource

logger = logging.getLogger(__name__)


class FixtureWellnessSource(WellnessDataSource):
    def __init__(self, data: dict | None = None):
        self._data = data or {}

    @classmethod
    def from_file(cls, path: str | Path) -> "FixtureWellnessSource":
        path = Path(path)
        if not path.exists():
            logger.warning("Wellness fixtures not found at %s; capabilities will report not_found", path)
            return cls({})
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded wellness fixtures for %d user(s) from %s", len(data.get("users", {})), path)
        return cls(data)

    @classmethod
    def from_config(cls, cfg: dict) -> "FixtureWellnessSource":
        return cls.from_file(cfg.get("data", {}).get("fixtures_path", "./data/wellness.yaml"))

    def _user(self, user_id: str) -> dict:
        return self._data.get("users", {}).get(user_id) or {}

    def _section(self, user_id: str, section: str, key: str | None) -> dict | None:
        entries = self._user(user_id).get(section) or {}
        if key is None:
            return copy.deepcopy(entries) or None
        found = entries.get(key)
        return copy.deepcopy(found) if found is not None else None

    async def health_metrics(self, user_id, metric_type, time_period):
        metrics = self._user(user_id).get("metrics")
        if not metrics:
            return None
        if metric_type == "overview":
            return {"metrics": copy.deepcopy(metrics)}
        value = metrics.get(metric_type)
        if value is None:
            return None
        return {"metric": copy.deepcopy(value)}

    async def goal_progress(self, user_id, goal_type):
        goals = self._user(user_id).get("goals") or {}
        if goal_type and goal_type in goals:
            return {goal_type: copy.deepcopy(goals[goal_type])}
        return copy.deepcopy(goals) or None

    async def meal_plan(self, user_id, day, include_recipes):
        plans = self._user(user_id).get("meal_plans") or {}
        plan = plans.get(day) or plans.get("default")
        if not plan:
            return None
        plan = copy.deepcopy(plan)
        if not include_recipes:
            for meal in plan.get("meals", []):
                meal.pop("recipe_id", None)
        return plan

    async def nutrition_snapshot(self, user_id, time_period):
        return self._section(user_id, "nutrition", time_period)

    async def recipe(self, recipe_id):
        found = self._data.get("recipes", {}).get(recipe_id)
        if found is None:
            return None
        return {"id": recipe_id, **copy.deepcopy(found)}

    async def visualization(self, user_id, visualization_type, time_period):
        payload = self._section(user_id, "visualizations", visualization_type)
        if payload is None:
            return None
        payload.setdefault("type", visualization_type)
        if time_period:
            payload["timePeriod"] = time_period
        return payload
