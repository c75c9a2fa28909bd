from __future__ import annotations

from step_sync_assistant.conversation.intents import Intent

_TEMPLATES: dict[Intent, str] = {
    Intent.GREETING: "Hi! I'm Step Sync Assistant. I help fix step syncing issues. What's going on with your steps?",
    Intent.THANKS: "You're welcome! Let me know if you need anything else.",
    Intent.FAREWELL: "Glad I could help. Come back any time your steps act up.",
    Intent.WHY_PERMISSION_NEEDED: (
        "Fair question! Step count permission lets me read your daily step data and spot syncing issues. "
        "Activity permission helps identify your data sources and filter duplicate entries. "
        "Your data stays private and is never shared with the AI."
    ),
    Intent.WANT_TO_GRANT_PERMISSION: (
        "Great! Open the permission settings and select Steps and Activity, then tap \"Allow\"."
    ),
    Intent.PERMISSION_DENIED: (
        "It looks like permissions are denied. To track your steps I need access to step count "
        "and activity data. Would you like to grant permission now?"
    ),
    Intent.STEPS_NOT_SYNCING: (
        "Let me help figure out what's going on. When did you last see your steps sync?"
    ),
    Intent.SYNC_DELAYED: "Sync delays can happen for a few reasons. Let me check your setup.",
    Intent.WRONG_STEP_COUNT: (
        "Step count mismatches usually happen when multiple apps track steps, manual entries are "
        "included, or devices count differently. Let me check your data sources."
    ),
    Intent.DUPLICATE_STEPS: (
        "Duplicate steps usually mean more than one app is tracking at the same time. "
        "Let me look at your data sources."
    ),
    Intent.DATA_MISSING: "Let me help find your missing data. Which time period is missing?",
    Intent.MULTIPLE_APPS_CONFLICT: (
        "Multiple fitness apps can conflict with each other. I'll help you choose one primary source."
    ),
    Intent.BATTERY_OPTIMIZATION: (
        "Battery optimization can block background sync. Try excluding your step tracking app "
        "from battery saver settings."
    ),
    Intent.HEALTH_CONNECT_NOT_INSTALLED: (
        "Your Android version needs the Health Connect app to track steps. Install it from the "
        "Play Store, open it once to set it up, then come back here."
    ),
    Intent.CHECKING_STATUS: "Let me check your setup: permissions, data sources and sync status.",
    Intent.NEED_HELP: (
        "I'm here to help! Are your steps not syncing, is the count wrong, or is something else going on?"
    ),
    Intent.UNCLEAR: (
        "I'm not quite sure what you need. Is it about permissions, syncing, or your step data?"
    ),
}


def render(intent: Intent) -> str:
    return _TEMPLATES.get(intent, _TEMPLATES[Intent.UNCLEAR])
