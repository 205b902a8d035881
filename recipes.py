"""Recipe, node and edge snapshots supplied by the canvas.

Quantities are per machine cycle. Recipes flagged ``per_second`` already give
per-second quantities (depth-based drills).
"""

import math
from dataclasses import dataclass, field, replace

from frozendict import frozendict

from heat_sources import INDUSTRIAL_FIREBOX, STEAM_PRODUCTS, has_temp_dependent_cycle

# Sentinel quantity for ports whose rate is computed by an external configuration step
VARIABLE = "Variable"

# Placeholder product for ports the player has not chosen yet
VARIABLE_PRODUCT = "p_variableproduct"


@dataclass(frozen=True)
class Ingredient:
    """one input or output slot of a recipe"""

    product_id: str
    quantity: float | str
    temperature: float | None = None
    original_quantity: float | None = None


@dataclass(frozen=True)
class Recipe:
    """a machine's input/output/cycle-time template"""

    recipe_id: str
    machine_id: str
    inputs: tuple[Ingredient, ...] = ()
    outputs: tuple[Ingredient, ...] = ()
    cycle_time: float | str = 1.0
    per_second: bool = False
    variable_rate: bool = False
    power_consumption: float = 0.0
    temperature_settings: frozendict = field(default_factory=frozendict)
    temp_dependent_input_temp: float | None = None


@dataclass(frozen=True)
class ProductionNode:
    """one placed machine group"""

    node_id: str
    recipe: Recipe
    machine_count: float = 0.0

    def with_machine_count(self, machine_count: float) -> "ProductionNode":
        """Return a copy of this node running machine_count machines."""
        return replace(self, machine_count=machine_count)


@dataclass(frozen=True)
class Edge:
    """a material connection from an output handle to an input handle"""

    edge_id: str
    source: str
    source_handle: str
    target: str
    target_handle: str


def is_special_recipe(recipe: Recipe) -> bool:
    """True if the recipe's rate is not simply quantity / cycle time.

    Special recipes are solved even when their cycle time is missing.
    """
    return (
        recipe.per_second
        or recipe.variable_rate
        or recipe.machine_id == INDUSTRIAL_FIREBOX
        or has_temp_dependent_cycle(recipe.machine_id)
    )


def recipe_uses_steam(recipe: Recipe) -> bool:
    """True if any recipe input is a steam product"""
    return steam_input_index(recipe) >= 0


def steam_input_index(recipe: Recipe) -> int:
    """Return the index of the first steam input, or -1."""
    for index, ingredient in enumerate(recipe.inputs):
        if ingredient.product_id in STEAM_PRODUCTS:
            return index
    return -1


def as_number(value) -> float | None:
    """Return value as a finite float, or None if it is not one.

    Booleans and the VARIABLE sentinel are not numbers.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _require(data: dict, key: str, kind: str):
    """Return data[key], raising ValueError naming the record kind if it is missing."""
    try:
        return data[key]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"{kind} is missing required field '{key}'") from exc


def _ingredient_from_dict(data: dict) -> Ingredient:
    quantity = _require(data, "quantity", "Ingredient")
    if quantity != VARIABLE and as_number(quantity) is None:
        raise ValueError(f"Invalid quantity {quantity!r} for {data.get('product_id')}")
    return Ingredient(
        product_id=_require(data, "product_id", "Ingredient"),
        quantity=quantity,
        temperature=data.get("temperature"),
        original_quantity=data.get("original_quantity"),
    )


def recipe_from_dict(data: dict) -> Recipe:
    """Build a Recipe from a plain dict.

    Precondition:
        data has "recipe_id" and "machine_id"; "inputs"/"outputs" are lists of
        dicts with "product_id" and "quantity"

    Postcondition:
        returns an immutable Recipe; missing optional fields take defaults

    Args:
        data: recipe dict

    Returns:
        Recipe

    Raises:
        ValueError: if a required field is missing or a quantity is malformed
    """
    return Recipe(
        recipe_id=_require(data, "recipe_id", "Recipe"),
        machine_id=_require(data, "machine_id", "Recipe"),
        inputs=tuple(_ingredient_from_dict(item) for item in data.get("inputs", ())),
        outputs=tuple(_ingredient_from_dict(item) for item in data.get("outputs", ())),
        cycle_time=data.get("cycle_time", 1.0),
        per_second=bool(data.get("per_second", False)),
        variable_rate=bool(data.get("variable_rate", False)),
        power_consumption=float(data.get("power_consumption", 0.0)),
        temperature_settings=frozendict(data.get("temperature_settings", {})),
        temp_dependent_input_temp=data.get("temp_dependent_input_temp"),
    )


def node_from_dict(data: dict) -> ProductionNode:
    """Build a ProductionNode from a dict with "id", "recipe" and "machine_count".

    Raises:
        ValueError: if a required field is missing or malformed
    """
    machine_count = data.get("machine_count", 0.0)
    if as_number(machine_count) is None:
        raise ValueError(f"Invalid machine count {machine_count!r} for node {data.get('id')}")
    return ProductionNode(
        node_id=_require(data, "id", "Node"),
        recipe=recipe_from_dict(_require(data, "recipe", "Node")),
        machine_count=float(machine_count),
    )


def edge_from_dict(data: dict) -> Edge:
    """Build an Edge from a dict with id, source, sourceHandle, target and targetHandle.

    Raises:
        ValueError: if a required field is missing
    """
    return Edge(
        edge_id=_require(data, "id", "Edge"),
        source=_require(data, "source", "Edge"),
        source_handle=_require(data, "sourceHandle", "Edge"),
        target=_require(data, "target", "Edge"),
        target_handle=_require(data, "targetHandle", "Edge"),
    )


def _ingredient_to_dict(ingredient: Ingredient) -> dict:
    result = {"product_id": ingredient.product_id, "quantity": ingredient.quantity}
    if ingredient.temperature is not None:
        result["temperature"] = ingredient.temperature
    if ingredient.original_quantity is not None:
        result["original_quantity"] = ingredient.original_quantity
    return result


def node_to_dict(node: ProductionNode) -> dict:
    """Convert a node back into the plain dict form read by node_from_dict."""
    recipe = node.recipe
    recipe_dict = {
        "recipe_id": recipe.recipe_id,
        "machine_id": recipe.machine_id,
        "inputs": [_ingredient_to_dict(item) for item in recipe.inputs],
        "outputs": [_ingredient_to_dict(item) for item in recipe.outputs],
        "cycle_time": recipe.cycle_time,
        "per_second": recipe.per_second,
        "variable_rate": recipe.variable_rate,
        "power_consumption": recipe.power_consumption,
        "temperature_settings": dict(recipe.temperature_settings),
    }
    if recipe.temp_dependent_input_temp is not None:
        recipe_dict["temp_dependent_input_temp"] = recipe.temp_dependent_input_temp
    return {"id": node.node_id, "recipe": recipe_dict, "machine_count": node.machine_count}
