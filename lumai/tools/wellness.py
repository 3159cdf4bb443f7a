"""
Wellness capabilities: the read-only functions the assistant may call.

Each capability is a FunctionDeclaration (what the model sees) plus a thin
handler that coerces the model's arguments and asks the host's
WellnessDataSource for the data. The business logic lives in the host; this
module only owns argument defaults and the result envelope:

    {"status": "ok", ...}              data found
    {"status": "not_found", "reason"}  source returned nothing
    {"status": "error", "reason"}      arguments unusable
"""

from __future__ import annotations

import abc
import logging
from datetime import date
from typing import Any

from lumai.models import FunctionContext, FunctionDeclaration
from lumai.tools.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

METRIC_TYPES = ("weight", "height", "bmi", "wellness_score", "overview")
METRIC_PERIODS = ("current", "7d", "30d", "90d")
NUTRITION_PERIODS = ("today", "7d", "30d")
VISUALIZATION_TYPES = ("weight_trend", "protein_vs_target", "macro_breakdown", "sleep_vs_target")


GET_HEALTH_METRICS = FunctionDeclaration(
    name="get_health_metrics",
    description="Retrieves up-to-date user health metrics (weight, height, BMI, wellness score).",
    parameters={
        "type": "object",
        "properties": {
            "metric_type": {"type": "string", "enum": list(METRIC_TYPES), "description": "Metric to retrieve."},
            "time_period": {"type": "string", "enum": list(METRIC_PERIODS), "description": "Duration for trend data."},
        },
        "required": ["metric_type"],
    },
)

GET_GOAL_PROGRESS = FunctionDeclaration(
    name="get_goal_progress",
    description="Returns progress toward goals with milestone breakdowns.",
    parameters={
        "type": "object",
        "properties": {
            "goal_type": {
                "type": "string",
                "description": "Optional goal focus to highlight (weight, activity, habits).",
            },
        },
    },
)

GET_MEAL_PLAN = FunctionDeclaration(
    name="get_meal_plan",
    description="Fetches the current meal plan with meal details for a specific day.",
    parameters={
        "type": "object",
        "properties": {
            "day": {"type": "string", "description": "ISO date (YYYY-MM-DD). Defaults to today."},
            "include_recipes": {"type": "boolean", "description": "Whether to include recipe IDs for each meal."},
        },
    },
)

GET_NUTRITION_SNAPSHOT = FunctionDeclaration(
    name="get_nutrition_snapshot",
    description="Provides nutrition totals vs. targets for a recent date range.",
    parameters={
        "type": "object",
        "properties": {
            "time_period": {"type": "string", "enum": list(NUTRITION_PERIODS), "description": "Range for logged intake."},
        },
    },
)

GET_RECIPE_DETAILS = FunctionDeclaration(
    name="get_recipe_details",
    description="Returns recipe instructions, ingredients, and nutrition.",
    parameters={
        "type": "object",
        "properties": {
            "recipe_id": {"type": "string", "description": "Recipe identifier from the user's meal plan."},
        },
        "required": ["recipe_id"],
    },
)

GET_VISUALIZATION = FunctionDeclaration(
    name="get_visualization",
    description="Generates chart-ready data for trends or comparisons.",
    parameters={
        "type": "object",
        "properties": {
            "visualization_type": {"type": "string", "enum": list(VISUALIZATION_TYPES[:3])},
            "time_period": {"type": "string", "description": "Optional timeframe for the visualization."},
        },
        "required": ["visualization_type"],
    },
)


class WellnessDataSource(abc.ABC):
    """
    Host-owned data layer. Every method returns a JSON-serializable dict,
    or None when there is nothing to report for the user.
    """

    @abc.abstractmethod
    async def health_metrics(self, user_id: str, metric_type: str, time_period: str) -> dict | None: ...

    @abc.abstractmethod
    async def goal_progress(self, user_id: str, goal_type: str | None) -> dict | None: ...

    @abc.abstractmethod
    async def meal_plan(self, user_id: str, day: str, include_recipes: bool) -> dict | None: ...

    @abc.abstractmethod
    async def nutrition_snapshot(self, user_id: str, time_period: str) -> dict | None: ...

    @abc.abstractmethod
    async def recipe(self, recipe_id: str) -> dict | None: ...

    @abc.abstractmethod
    async def visualization(self, user_id: str, visualization_type: str, time_period: str | None) -> dict | None: ...


def _str_arg(args: dict, key: str) -> str | None:
    value = args.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _not_found(reason: str) -> dict:
    return {"status": "not_found", "reason": reason}


class WellnessCapabilities:
    """Argument glue between model calls and a WellnessDataSource."""

    def __init__(self, source: WellnessDataSource):
        self.source = source

    async def get_health_metrics(self, args: dict, context: FunctionContext) -> dict:
        metric = _str_arg(args, "metric_type") or "weight"
        period = _str_arg(args, "time_period") or ("30d" if metric == "wellness_score" else "current")
        data = await self.source.health_metrics(context.user_id, metric, period)
        if data is None:
            return _not_found("No profile available.")
        return {"status": "ok", "metricType": metric, "timePeriod": period, **data}

    async def get_goal_progress(self, args: dict, context: FunctionContext) -> dict:
        progress = await self.source.goal_progress(context.user_id, _str_arg(args, "goal_type"))
        if progress is None:
            return _not_found("Goal progress is unavailable.")
        return {"status": "ok", "progress": progress}

    async def get_meal_plan(self, args: dict, context: FunctionContext) -> dict:
        day = _str_arg(args, "day") or date.today().isoformat()
        include_recipes = args.get("include_recipes") is True
        plan = await self.source.meal_plan(context.user_id, day, include_recipes)
        if plan is None:
            return _not_found("No active meal plan found.")
        return {"status": "ok", "date": day, **plan}

    async def get_nutrition_snapshot(self, args: dict, context: FunctionContext) -> dict:
        period = _str_arg(args, "time_period") or "today"
        snapshot = await self.source.nutrition_snapshot(context.user_id, period)
        if snapshot is None:
            return _not_found("No nutrition logs recorded.")
        return {"status": "ok", "timePeriod": period, **snapshot}

    async def get_recipe_details(self, args: dict, context: FunctionContext) -> dict:
        recipe_id = _str_arg(args, "recipe_id")
        if recipe_id is None:
            return {"status": "error", "reason": "recipe_id is required"}
        recipe = await self.source.recipe(recipe_id)
        if recipe is None:
            return _not_found("Recipe not found.")
        return {"status": "ok", "recipe": recipe}

    async def get_visualization(self, args: dict, context: FunctionContext) -> dict:
        chart = _str_arg(args, "visualization_type") or "weight_trend"
        payload = await self.source.visualization(context.user_id, chart, _str_arg(args, "time_period"))
        if payload is None:
            return _not_found("Unable to build visualization from current data.")
        return {"status": "ok", "visualization": payload}


def build_wellness_registry(
    source: WellnessDataSource,
    tools_cfg: dict | None = None,
    registry: CapabilityRegistry | None = None,
) -> CapabilityRegistry:
    """Register every enabled wellness capability (tools.<name>.enabled, default on)."""
    tools_cfg = tools_cfg or {}
    registry = registry or CapabilityRegistry()
    capabilities = WellnessCapabilities(source)

    entries: list[tuple[FunctionDeclaration, Any]] = [
        (GET_HEALTH_METRICS, capabilities.get_health_metrics),
        (GET_GOAL_PROGRESS, capabilities.get_goal_progress),
        (GET_MEAL_PLAN, capabilities.get_meal_plan),
        (GET_NUTRITION_SNAPSHOT, capabilities.get_nutrition_snapshot),
        (GET_RECIPE_DETAILS, capabilities.get_recipe_details),
        (GET_VISUALIZATION, capabilities.get_visualization),
    ]
    for declaration, handler in entries:
        if not tools_cfg.get(declaration.name, {}).get("enabled", True):
            logger.info("Capability '%s' disabled by config", declaration.name)
            continue
        registry.register(declaration, handler)

    logger.info("Capability registry loaded: %s", registry.list_tools())
    return registry
