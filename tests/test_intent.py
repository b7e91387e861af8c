import pytest

from coach.intent import classify, duration_to_seconds, normalize_exercise_alias

@pytest.mark.parametrize("text, tool_name, arguments", [
    ("10 pushups", "log_set", {"exercise_name": "Push-ups", "reps": 10}),
    ("log 12 squats", "log_set", {"exercise_name": "Squats", "reps": 12}),
    ("squats x 5", "log_set", {"exercise_name": "Squats", "reps": 5}),
    ("30s plank", "log_set", {"exercise_name": "Plank", "duration_seconds": 30}),
    ("plank for 2 minutes", "log_set", {"exercise_name": "Plank", "duration_seconds": 120}),
    ("10 pushups @ 20 kg", "log_set", {"exercise_name": "Push-ups", "reps": 10, "weight": 20.0, "unit": "kg"}),
    ("5 bench press at 135lbs", "log_set", {"exercise_name": "Bench Press", "reps": 5, "weight": 135.0, "unit": "lbs"}),
    ("show today's summary", "get_today_summary", {}),
    ("What did I do today", "get_today_summary", {}),
    ("show trend for squats", "get_exercise_report", {"exercise_name": "Squats"}),
    ("pushups history", "get_exercise_report", {"exercise_name": "Push-ups"}),
    ("what should I work on today?", "get_focus_suggestions", {}),
    ("switch to kg", "set_weight_unit", {"unit": "kg"}),
    ("set my unit to lbs", "set_weight_unit", {"unit": "lbs"}),
    ("turn sound off", "set_sound", {"enabled": False}),
    ("sound on please", "set_sound", {"enabled": True}),
])
def test_classify(text, tool_name, arguments):
    call = classify(text)
    assert call is not None
    assert call.tool_name == tool_name
    assert call.arguments == arguments

@pytest.mark.parametrize("text", ["", "   ", "hello there", "tell me a joke"])
def test_classify_no_match(text):
    assert classify(text) is None

def test_classify_normalizes_whitespace_and_case():
    assert classify("  10   PUSHUPS  ") == classify("10 pushups")

def test_exercise_aliases():
    assert normalize_exercise_alias("pull-ups") == "Pull-ups"
    assert normalize_exercise_alias("sit ups!") == "Sit Ups"
    assert normalize_exercise_alias("kettlebell swing") == "Kettlebell Swing"

def test_duration_to_seconds_rounds():
    assert duration_to_seconds(1.5, "min") == 90
    assert duration_to_seconds(12.4, "s") == 12
