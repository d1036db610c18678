"""
Food Impact Points (FIP).

Estimates the environmental impact of rescued food from its category, unit
and quantity: ``quantity x average weight (kg) x impact multiplier``.
Pure functions, no database access.
"""

UNITS = ('portions', 'pieces', 'pax', 'boxes')

# category -> unit -> (average weight in kg, impact multiplier)
FOOD_IMPACT_MATRIX = {
    'Meals': {
        'portions': {'avg_weight': 0.35, 'impact_multiplier': 1.0},
        'pax': {'avg_weight': 0.35, 'impact_multiplier': 1.0},
        'boxes': {'avg_weight': 0.5, 'impact_multiplier': 1.0},
        'pieces': {'avg_weight': 0.35, 'impact_multiplier': 1.0},
    },
    'Bakery': {
        'portions': {'avg_weight': 0.15, 'impact_multiplier': 0.8},
        'pieces': {'avg_weight': 0.08, 'impact_multiplier': 0.8},
        'boxes': {'avg_weight': 0.4, 'impact_multiplier': 0.8},
        'pax': {'avg_weight': 0.15, 'impact_multiplier': 0.8},
    },
    'Snacks': {
        'portions': {'avg_weight': 0.1, 'impact_multiplier': 0.6},
        'pieces': {'avg_weight': 0.05, 'impact_multiplier': 0.6},
        'boxes': {'avg_weight': 0.3, 'impact_multiplier': 0.6},
        'pax': {'avg_weight': 0.1, 'impact_multiplier': 0.6},
    },
    'Beverages': {
        'portions': {'avg_weight': 0.25, 'impact_multiplier': 0.4},
        'pieces': {'avg_weight': 0.5, 'impact_multiplier': 0.4},
        'boxes': {'avg_weight': 2.0, 'impact_multiplier': 0.4},
        'pax': {'avg_weight': 0.25, 'impact_multiplier': 0.4},
    },
    'Fruits': {
        'portions': {'avg_weight': 0.2, 'impact_multiplier': 0.9},
        'pieces': {'avg_weight': 0.2, 'impact_multiplier': 0.9},
        'boxes': {'avg_weight': 1.5, 'impact_multiplier': 0.9},
        'pax': {'avg_weight': 0.2, 'impact_multiplier': 0.9},
    },
    'Others': {
        'portions': {'avg_weight': 0.2, 'impact_multiplier': 0.7},
        'pieces': {'avg_weight': 0.2, 'impact_multiplier': 0.7},
        'boxes': {'avg_weight': 0.5, 'impact_multiplier': 0.7},
        'pax': {'avg_weight': 0.2, 'impact_multiplier': 0.7},
    },
}

# Used for any category/unit pair missing from the matrix
DEFAULT_IMPACT = {'avg_weight': 0.2, 'impact_multiplier': 0.7}

CO2_PER_FIP = 1.5  # kg CO2e


def _lookup(category, unit):
    return FOOD_IMPACT_MATRIX.get(category, {}).get(unit, DEFAULT_IMPACT)


def calculate_food_impact_points(category, unit, quantity):
    """
    Food Impact Points for ``quantity`` units, rounded to 2 decimals.

    Degenerate input (empty category/unit, quantity <= 0) scores 0.

    >>> calculate_food_impact_points('Meals', 'portions', 10)
    3.5
    >>> calculate_food_impact_points('Bakery', 'pieces', 10)
    0.64
    """
    if not category or not unit or not quantity or quantity <= 0:
        return 0

    entry = _lookup(category, unit)
    estimated_weight_kg = quantity * entry['avg_weight']
    return round(estimated_weight_kg * entry['impact_multiplier'], 2)


def get_impact_breakdown(category, unit, quantity):
    """ Shows the weight and multiplier behind a FIP value. """
    entry = _lookup(category, unit)
    estimated_weight_kg = quantity * entry['avg_weight']
    impact_points = estimated_weight_kg * entry['impact_multiplier']

    return {
        'category': category,
        'unit': unit,
        'quantity': quantity,
        'avg_weight_per_unit': entry['avg_weight'],
        'total_weight_kg': round(estimated_weight_kg, 2),
        'impact_multiplier': entry['impact_multiplier'],
        'total_impact_points': round(impact_points, 2),
        'calculation': f"{quantity} × {entry['avg_weight']}kg × {entry['impact_multiplier']} = {impact_points:.2f} FIP",
    }


def get_valid_units_for_category(category):
    if category not in FOOD_IMPACT_MATRIX:
        return list(UNITS)
    return list(FOOD_IMPACT_MATRIX[category].keys())


def get_available_categories():
    return list(FOOD_IMPACT_MATRIX.keys())


def is_valid_category_unit(category, unit):
    return unit in FOOD_IMPACT_MATRIX.get(category, {})


def estimate_carbon_footprint(impact_points):
    """ Rough CO2e estimate in kg (1 FIP ~ 1.5 kg CO2e). """
    return round(impact_points * CO2_PER_FIP, 2)


def format_impact_points(impact_points, include_unit=True):
    formatted = f"{impact_points:.1f}"
    return f"{formatted} FIP" if include_unit else formatted


def get_impact_level(impact_points):
    if impact_points >= 10:
        return {'level': 'Exceptional', 'color': 'green', 'description': 'Major environmental impact!'}
    elif impact_points >= 5:
        return {'level': 'High', 'color': 'blue', 'description': 'Significant waste prevention'}
    elif impact_points >= 2:
        return {'level': 'Good', 'color': 'yellow', 'description': 'Good contribution'}
    elif impact_points >= 0.5:
        return {'level': 'Moderate', 'color': 'orange', 'description': 'Every bit helps'}
    return {'level': 'Small', 'color': 'gray', 'description': 'Small but meaningful'}
