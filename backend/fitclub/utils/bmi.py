"""Body-mass-index helpers shared by the BMI, weight and profile endpoints."""

from typing import List, Optional, Tuple

HEALTHY_MIN_BMI = 18.5
HEALTHY_MAX_BMI = 24.9
TREND_THRESHOLD = 0.5

# (upper bound, category, health status, colour, recommendations)
_BANDS = (
    (18.5, "Underweight", "Below normal weight", "#3B82F6", [
        "Consider consulting with a healthcare provider",
        "Focus on nutrient-dense, calorie-rich foods",
        "Include strength training to build muscle mass",
        "Ensure adequate protein intake",
    ]),
    (25.0, "Normal weight", "Healthy weight range", "#10B981", [
        "Maintain current healthy lifestyle",
        "Continue regular physical activity",
        "Keep a balanced, nutritious diet",
        "Monitor weight regularly",
    ]),
    (30.0, "Overweight", "Above normal weight", "#F59E0B", [
        "Consider gradual weight loss (1-2 lbs per week)",
        "Increase physical activity to 150+ minutes per week",
        "Focus on portion control and balanced meals",
        "Consider consulting with a nutritionist",
    ]),
    (float("inf"), "Obese", "Significantly above normal weight", "#EF4444", [
        "Consult with healthcare provider for weight management plan",
        "Consider supervised weight loss program",
        "Focus on sustainable lifestyle changes",
        "Regular monitoring of health markers",
    ]),
)


def calculate_bmi(weight_kg: float, height_cm: float) -> float:
    """Return BMI rounded to one decimal place."""
    meters = height_cm / 100
    return round(weight_kg / (meters * meters), 1)


def bmi_info(bmi: float) -> dict:
    """Category, health status, colour code and recommendations for `bmi`."""
    for upper, category, status, colour, recs in _BANDS:
        if bmi < upper:
            return {
                "category": category,
                "health_status": status,
                "color_code": colour,
                "recommendations": list(recs),
            }
    raise ValueError(f"invalid bmi: {bmi}")


def bmi_category(bmi: float) -> str:
    return bmi_info(bmi)["category"]


def ideal_weight_range(height_cm: float) -> dict:
    meters = height_cm / 100
    return {
        "min": round(HEALTHY_MIN_BMI * meters * meters, 1),
        "max": round(HEALTHY_MAX_BMI * meters * meters, 1),
    }


def weight_goal(weight_kg: float, height_cm: float) -> Tuple[str, Optional[float]]:
    """Describe how far `weight_kg` is from the healthy range.

    Returns the goal text and the signed difference to the nearest bound
    (negative means weight to gain), or `None` inside the range.
    """
    ideal = ideal_weight_range(height_cm)
    if weight_kg < ideal["min"]:
        diff = round(weight_kg - ideal["min"], 1)
        return f"Gain {abs(diff):.1f} kg to reach healthy weight", diff
    if weight_kg > ideal["max"]:
        diff = round(weight_kg - ideal["max"], 1)
        return f"Lose {diff:.1f} kg to reach healthy weight", diff
    return "You are in the healthy weight range", None


def bmi_trend(history: List[float]) -> Tuple[Optional[str], Optional[float]]:
    """Trend between the two newest values of a newest-first BMI list."""
    if len(history) < 2:
        return None, None
    change = round(history[0] - history[1], 1)
    if change > TREND_THRESHOLD:
        return "increasing", change
    if change < -TREND_THRESHOLD:
        return "decreasing", change
    return "stable", change
