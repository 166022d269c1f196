"""Multilingual keyword dictionaries (English, Hindi, Hinglish).

All matching against these lists is case-insensitive substring matching, so
short entries such as "AC" also hit inside longer words.
"""

from __future__ import annotations

ESCALATION_INDICATORS = (
    # English
    "never respond", "always ignore", "how many times", "told you before",
    "fed up", "frustrated", "angry", "sick of", "tired of", "enough",
    "last time", "final warning", "complained before", "repeatedly",
    # Hindi / Hinglish
    "कई बार कहा", "बार बार", "फिर से", "परेशान हूं", "गुस्सा",
    "हमेशा ignore", "कभी नहीं सुनते", "बहुत बार",
    "kitni baar", "baar baar", "koi sunta nahi",
)

FRUSTRATION_MARKERS = (
    "!!!", "WHY", "NEVER", "ALWAYS", "WORST", "TERRIBLE",
    "बहुत गुस्सा", "बहुत खराब", "क्यों नहीं",
    "bas karo", "enough hai",
)

GYM_CONTEXT_GROUPS: dict[str, tuple[str, ...]] = {
    "EQUIPMENT": (
        "treadmill", "weights", "machine", "dumbbells", "equipment", "bike",
        "ट्रेडमिल", "मशीन", "उपकरण", "डम्बल",
        "machine nahi chal raha", "gym ka equipment",
    ),
    "FACILITY": (
        "AC", "temperature", "bathroom", "locker", "shower", "cleanliness",
        "बाथरूम", "सफाई", "तापमान",
        "AC nahi chal raha", "very dirty hai",
    ),
    "STAFF": (
        "trainer", "staff", "employee", "manager", "reception",
        "ट्रेनर", "स्टाफ", "मैनेजर",
        "staff bahut rude", "trainer achha nahi",
    ),
    "MEMBERSHIP": (
        "membership", "billing", "payment", "fee", "subscription",
        "सदस्यता", "फीस", "शुल्क",
        "fee kitni hai", "paisa waste ho gaya",
    ),
    "SAFETY": (
        "injury", "hurt", "danger", "accident", "emergency", "fire",
        "चोट", "खतरा", "दुर्घटना", "आपातकाल", "आग",
        "chot lagi", "khatra",
    ),
}

SAFETY_PHRASES = (
    "emergency", "danger", "injury", "fire", "accident", "help urgently",
    "आपातकाल", "खतरा", "चोट",
)

ESCALATION_PHRASES = (
    "never respond", "always ignore", "fed up", "frustrated", "angry",
    "कभी नहीं सुनते", "बहुत परेशान",
)

# Ordinal severity tiers used to track escalation language over time.
ESCALATION_TIERS: dict[str, tuple[str, ...]] = {
    "MILD": ("again", "still", "yet", "please", "फिर से", "अभी भी"),
    "MODERATE": ("frustrated", "annoyed", "disappointed", "परेशान", "नाराज़"),
    "SEVERE": ("angry", "furious", "fed up", "terrible", "worst", "गुस्सा", "बहुत खराब"),
    "CRITICAL": ("never respond", "always ignore", "last time", "complain", "कभी नहीं सुनते", "शिकायत"),
}

TIER_VALUES = {"MILD": 1, "MODERATE": 2, "SEVERE": 3, "CRITICAL": 4}

# Ordered keyword buckets for the local fallback classifier: first hit wins.
FALLBACK_BUCKETS: tuple[tuple[str, tuple[str, ...], float, float], ...] = (
    # (category, keywords, confidence, escalation_score)
    ("URGENT", ("emergency", "danger", "urgent"), 0.8, 1.0),
    ("COMPLAINT", ("complaint", "problem", "issue"), 0.6, 0.5),
    ("ESCALATION", ("frustrated", "angry", "never respond"), 0.7, 0.8),
    ("INSTRUCTION", ("check", "fix", "clean"), 0.5, 0.2),
)
