"""
Starting economy document, written by ``scripts/seed_economy_config.py``.

Engine code never falls back to these values at runtime: without a stored
config version every grant and withdrawal fails with ConfigUnavailable.

Economics behind the numbers: 10,000 points = $1.00. Ads/news are paid
out well under what their embedded inventory earns, trivia and spins are
loss leaders kept low, offerwalls and surveys are the profit centre and are
left uncapped.
"""

DEFAULT_ECONOMY_CONFIG = {
    "earningRates": {
        "watchAd": 20,
        "readNews": 50,
        "triviaCorrect": 20,
        "triviaBonus": 100,
        "gamePlaytime": 2,
        "dailySpin": 50,
        "offerComplete": 1000,
        "surveyComplete": 500,
        "referralSignup": 2500,
    },
    "dailyLimits": {
        "watchAd": 5,
        "readNews": 5,
        "triviaCorrect": 5,
        "triviaBonus": 1,
        "gamePlaytime": 60,
        "dailySpin": 1,
        "surveyComplete": 10,
    },
    "globalMargin": 1.0,
    "pointsPerDollar": 10000,
    "countryMultipliers": {
        "US": 1.0,
        "GB": 1.0,
        "CA": 1.0,
        "AU": 1.0,
        "DE": 1.0,
        "NG": 0.2,
        "GH": 0.2,
        "KE": 0.2,
        "IN": 0.25,
        "ZA": 0.3,
    },
    "maxMultiplier": 5.0,
    "streakTiers": [
        {"minDays": 0, "multiplier": 1.0, "label": "No Streak"},
        {"minDays": 3, "multiplier": 1.05, "label": "3-Day Streak"},
        {"minDays": 7, "multiplier": 1.10, "label": "Week Warrior"},
        {"minDays": 14, "multiplier": 1.15, "label": "Fortnight Champion"},
        {"minDays": 30, "multiplier": 1.20, "label": "Month Master"},
        {"minDays": 60, "multiplier": 1.25, "label": "Legend"},
    ],
    "happyHours": [
        {"name": "Lunch Rush", "startHour": 12, "endHour": 14, "multiplier": 2.0},
        {"name": "Evening Boost", "startHour": 18, "endHour": 20, "multiplier": 2.0},
        {"name": "Night Owl", "startHour": 21, "endHour": 23, "multiplier": 1.5},
    ],
    "weekendMultiplier": 1.25,
    "referralMultiplier": 1.0,
    "minimumWithdrawalPoints": 1000,
    "withdrawalTiers": {
        "new": {"minWithdrawalUSD": 1.00, "dailyLimitUSD": 1.00, "weeklyLimit": 1},
        "regular": {"minWithdrawalUSD": 0.50, "dailyLimitUSD": 2.00, "weeklyLimit": 1},
        "verified": {"minWithdrawalUSD": 0.25, "dailyLimitUSD": 5.00, "weeklyLimit": 2},
        "vip": {"minWithdrawalUSD": 0.10, "dailyLimitUSD": 10.00, "weeklyLimit": 3},
    },
}
