"""
Vision-model prompts for the two-tier analysis.

Tier 1 is a minimal yes/no food check; tier 2 requests the full
AnalysisResult shape with a decisive energy-band contract.
"""


# ═══════════════════════════════════════════════════════════
# TIER 1 - FOOD CHECK (cheap pre-filter)
# ═══════════════════════════════════════════════════════════

FOOD_CHECK_PROMPT = """Does this photo show food or a drink meant to be consumed as a meal or snack?

Answer with STRICT JSON only:
{"isFood": true | false, "confidence": "high" | "medium" | "low"}

Packaging alone, menus, pets, people or empty plates are NOT food."""


# ═══════════════════════════════════════════════════════════
# TIER 2 - DETAILED ANALYSIS
# ═══════════════════════════════════════════════════════════

ANALYSIS_PROMPT = """Analyze this food image for a meal insights app.

GOAL: Classify the "Energy Density" relative to a standard adult meal.

CRITICAL INSTRUCTION: Be decisive. Do NOT default to "moderate".
- If it has obvious carbs, fats, or large portions -> "heavy".
- If it is mostly vegetables or lean protein -> "light".
- Only use "moderate" for a truly balanced, standard portion.

Energy bands:
- "very_light": under 300 kcal
- "light": 300-500 kcal
- "moderate": 500-800 kcal
- "heavy": 800-1200 kcal
- "very_heavy": over 1200 kcal

Confidence:
- "high": items clearly visible
- "medium": hidden ingredients or sauces
- "low": cluttered or blurry photo

Flags:
- "mixedPlate": several distinct foods share the plate
- "unclearPortions": portion size cannot be judged from the photo
- "sharedDish": the dish is likely meant for more than one person

Return STRICT JSON only:
{
  "mealType": "breakfast" | "lunch" | "dinner" | "snack",
  "energyBand": "very_light" | "light" | "moderate" | "heavy" | "very_heavy",
  "confidence": "high" | "medium" | "low",
  "reasoning": "One short sentence on WHY, e.g. 'Fried dough and sugar glaze make this very energy dense.'",
  "flags": {"mixedPlate": boolean, "unclearPortions": boolean, "sharedDish": boolean},
  "insight": "One observation about the macro balance, e.g. 'High sugar punch for breakfast.'"
}"""
